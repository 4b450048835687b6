"""Unit tests for handler variant declarations and the capability registry."""

from __future__ import annotations

import pytest

from buildwatch.handlers import (
    CapabilityRegistry,
    DuplicateHandlerError,
    HandlerVariant,
    InvalidHandlerVariantError,
    UnknownHandlerError,
)


class _Recorder:
    def __init__(self, build: object) -> None:
        self.build = build
        self.seen: list[str] = []

    def on_event(self, event: object) -> None:
        self.seen.append(type(event).__name__)

    def done(self) -> None:
        self.seen.append("done")


def _variant(
    name: str, *event_types: str, completion: bool = False
) -> HandlerVariant[_Recorder]:
    return HandlerVariant(
        name=name,
        factory=_Recorder,
        event_handlers=dict.fromkeys(event_types, _Recorder.on_event),
        on_complete=_Recorder.done if completion else None,
    )


def test_variant_preserves_declaration_order() -> None:
    """Declared event types keep the order they were written in."""
    variant = _variant("h", "TaskFinished", "BuildStarted", "BuildFinished")

    assert variant.event_types == ("TaskFinished", "BuildStarted", "BuildFinished")
    assert variant.wants_completion is False


def test_variant_handler_mapping_is_read_only() -> None:
    """The handler mapping cannot be mutated after declaration."""
    variant = _variant("h", "BuildStarted")

    with pytest.raises(TypeError):
        variant.event_handlers["X"] = _Recorder.on_event  # type: ignore[index]


@pytest.mark.parametrize("name", ["", "   "])
def test_variant_rejects_blank_name(name: str) -> None:
    """A variant needs a name to be configured and logged."""
    with pytest.raises(InvalidHandlerVariantError, match="non-empty"):
        _variant(name, "BuildStarted")


def test_variant_rejects_blank_event_type() -> None:
    """Blank event types are refused at declaration time."""
    with pytest.raises(InvalidHandlerVariantError, match="empty event type"):
        _variant("h", "BuildStarted", " ")


def test_registry_union_is_deduplicated_in_first_declaration_order() -> None:
    """The filter lists each event type once, in first-seen order."""
    registry = CapabilityRegistry(
        [
            _variant("a", "BuildStarted", "BuildFinished"),
            _variant("b", "TaskFinished", "BuildStarted"),
        ]
    )

    assert registry.event_types == ("BuildStarted", "BuildFinished", "TaskFinished")
    assert len(registry) == 2


def test_registry_reports_per_variant_capabilities() -> None:
    """Each variant's capability mirrors its declaration."""
    first = _variant("a", "BuildStarted")
    second = _variant("b", "TaskFinished", completion=True)
    registry = CapabilityRegistry([first, second])

    capability = registry.capabilities_for(second)

    assert capability.event_types == ("TaskFinished",)
    assert capability.wants_completion is True
    assert registry.capabilities_for("a").event_types == ("BuildStarted",)
    assert [c.variant_name for c in registry.capabilities()] == ["a", "b"]


def test_registry_rejects_duplicate_names() -> None:
    """Two variants with the same name cannot be registered together."""
    with pytest.raises(DuplicateHandlerError) as excinfo:
        CapabilityRegistry([_variant("a", "BuildStarted"), _variant("a", "X")])

    assert excinfo.value.name == "a"


def test_registry_unknown_variant_lists_available_names() -> None:
    """Looking up an unregistered name reports what is available."""
    registry = CapabilityRegistry([_variant("b", "X"), _variant("a", "Y")])

    with pytest.raises(UnknownHandlerError) as excinfo:
        registry.capabilities_for("missing")

    assert excinfo.value.available == ("a", "b")


def test_registry_with_no_event_types_has_empty_filter() -> None:
    """Completion-only variants contribute nothing to the feed filter."""
    registry = CapabilityRegistry([_variant("only-complete", completion=True)])

    assert registry.event_types == ()
