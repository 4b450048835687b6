"""Declarative description of a pluggable build event handler.

A handler variant states up front which build event types it consumes by
mapping each event type name to the function that handles it, and whether
it wants a completion notification once the build's stream has ended. The
capability registry and handler factory only ever read this declaration.

Examples
--------
>>> class Counter:
...     def __init__(self, build):
...         self.count = 0
...
...     def on_task_finished(self, event):
...         self.count += 1
>>> variant = HandlerVariant(
...     name="task-counter",
...     factory=Counter,
...     event_handlers={"TaskFinished": Counter.on_task_finished},
... )
>>> variant.event_types
('TaskFinished',)

"""

from __future__ import annotations

import collections.abc as cabc
import dataclasses
import types
import typing as typ

from .errors import InvalidHandlerVariantError

if typ.TYPE_CHECKING:
    from buildwatch.export.models import Build, BuildEvent


@dataclasses.dataclass(frozen=True, slots=True)
class HandlerVariant[H]:
    """Capability descriptor and factory for one kind of handler.

    Attributes
    ----------
    name
        Unique name of the variant, used in configuration and logs.
    factory
        Callable constructing a fresh handler instance for a build.
    event_handlers
        Mapping from event type name to the function handling that event.
        Each function receives the handler instance and the decoded event.
        Declaration order is preserved and drives dispatch order.
    on_complete
        Optional function invoked once with the handler instance after the
        build's event stream has ended.

    """

    name: str
    factory: cabc.Callable[[Build], H]
    event_handlers: cabc.Mapping[str, cabc.Callable[[H, BuildEvent], None]] = (
        dataclasses.field(default_factory=dict)
    )
    on_complete: cabc.Callable[[H], None] | None = None

    def __post_init__(self) -> None:
        """Validate the declaration and freeze the handler mapping."""
        if not self.name.strip():
            raise InvalidHandlerVariantError.empty_name()
        for event_type in self.event_handlers:
            if not event_type.strip():
                raise InvalidHandlerVariantError.empty_event_type(self.name)
        object.__setattr__(
            self, "event_handlers", types.MappingProxyType(dict(self.event_handlers))
        )

    @property
    def event_types(self) -> tuple[str, ...]:
        """Return the declared event types in declaration order."""
        return tuple(self.event_handlers)

    @property
    def wants_completion(self) -> bool:
        """Return True when the variant declares a completion hook."""
        return self.on_complete is not None
