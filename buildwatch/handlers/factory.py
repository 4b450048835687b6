"""Per-build handler instantiation and dispatch table construction."""

from __future__ import annotations

import dataclasses
import functools
import typing as typ

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from buildwatch.export.models import Build, BuildEvent

    from .registry import CapabilityRegistry


@dataclasses.dataclass(frozen=True, slots=True)
class Subscription:
    """A handler instance's callback for one event type."""

    variant_name: str
    handler: object
    callback: cabc.Callable[[BuildEvent], None]


@dataclasses.dataclass(frozen=True, slots=True)
class CompletionHook:
    """A handler instance's end-of-stream callback."""

    variant_name: str
    handler: object
    callback: cabc.Callable[[], None]


@dataclasses.dataclass(slots=True)
class DispatchTable:
    """Routing state for a single build's event stream."""

    build: Build
    subscriptions: dict[str, list[Subscription]] = dataclasses.field(
        default_factory=dict
    )
    completions: list[CompletionHook] = dataclasses.field(default_factory=list)
    handlers: dict[str, object] = dataclasses.field(default_factory=dict)

    @property
    def event_types(self) -> tuple[str, ...]:
        """Return the event types that have at least one subscriber."""
        return tuple(self.subscriptions)

    def subscribers(self, event_type: str) -> cabc.Sequence[Subscription]:
        """Return the subscriptions for ``event_type`` in declaration order."""
        return self.subscriptions.get(event_type, ())


class HandlerFactory:
    """Instantiate handler variants for each admitted build."""

    def __init__(self, registry: CapabilityRegistry) -> None:
        """Bind the factory to the registry whose variants it instantiates."""
        self._registry = registry

    @property
    def registry(self) -> CapabilityRegistry:
        """Return the registry backing this factory."""
        return self._registry

    def create_dispatch_table(self, build: Build) -> DispatchTable:
        """Create fresh handler instances for ``build`` and index them.

        Every call constructs new instances; nothing is shared between
        builds.
        """
        table = DispatchTable(build=build)
        for variant in self._registry.variants:
            handler = variant.factory(build)
            table.handlers[variant.name] = handler
            for event_type, handle in variant.event_handlers.items():
                table.subscriptions.setdefault(event_type, []).append(
                    Subscription(
                        variant_name=variant.name,
                        handler=handler,
                        callback=functools.partial(handle, handler),
                    )
                )
            if variant.on_complete is not None:
                table.completions.append(
                    CompletionHook(
                        variant_name=variant.name,
                        handler=handler,
                        callback=functools.partial(variant.on_complete, handler),
                    )
                )
        return table
