"""Capability discovery over the configured handler variants."""

from __future__ import annotations

import dataclasses
import typing as typ

from .errors import DuplicateHandlerError, UnknownHandlerError

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from .variant import HandlerVariant


@dataclasses.dataclass(frozen=True, slots=True)
class Capability:
    """Event types and completion interest declared by one variant."""

    variant_name: str
    event_types: tuple[str, ...]
    wants_completion: bool


class CapabilityRegistry:
    """Read-only view of what each handler variant wants to receive.

    The registry is computed once from the variants' declarations. Its
    ``event_types`` union, deduplicated in first-declaration order, is the
    exact filter requested from every per-build event feed.
    """

    def __init__(self, variants: cabc.Iterable[HandlerVariant[typ.Any]]) -> None:
        """Index the variants by name, rejecting duplicate names."""
        ordered = tuple(variants)
        capabilities: dict[str, Capability] = {}
        for variant in ordered:
            if variant.name in capabilities:
                raise DuplicateHandlerError(variant.name)
            capabilities[variant.name] = Capability(
                variant_name=variant.name,
                event_types=variant.event_types,
                wants_completion=variant.wants_completion,
            )
        self._variants = ordered
        self._capabilities = capabilities
        self._event_types = tuple(
            dict.fromkeys(
                event_type for variant in ordered for event_type in variant.event_types
            )
        )

    @property
    def variants(self) -> tuple[HandlerVariant[typ.Any], ...]:
        """Return the registered variants in declaration order."""
        return self._variants

    @property
    def event_types(self) -> tuple[str, ...]:
        """Return the union of all declared event types."""
        return self._event_types

    def capabilities(self) -> tuple[Capability, ...]:
        """Return the capability of every variant in declaration order."""
        return tuple(self._capabilities.values())

    def capabilities_for(self, variant: HandlerVariant[typ.Any] | str) -> Capability:
        """Return the declared capability of a variant or variant name."""
        name = variant if isinstance(variant, str) else variant.name
        try:
            return self._capabilities[name]
        except KeyError:
            raise UnknownHandlerError(name, self._capabilities) from None

    def __len__(self) -> int:
        """Return the number of registered variants."""
        return len(self._variants)
