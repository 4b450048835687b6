"""Errors raised while assembling handler variants."""

from __future__ import annotations

import typing as typ

if typ.TYPE_CHECKING:
    import collections.abc as cabc


class HandlerConfigError(Exception):
    """Base class for handler configuration errors."""


class DuplicateHandlerError(HandlerConfigError):
    """Raised when two handler variants share a name."""

    def __init__(self, name: str) -> None:
        """Initialise with the duplicated variant name."""
        self.name = name
        super().__init__(f"Handler variant registered more than once: {name}")


class UnknownHandlerError(HandlerConfigError):
    """Raised when a handler name does not match any known variant."""

    def __init__(self, name: str, available: cabc.Iterable[str] = ()) -> None:
        """Initialise with the unknown name and the names that do exist."""
        self.name = name
        self.available = tuple(sorted(available))
        choices = ", ".join(self.available) or "none"
        super().__init__(f"Unknown handler variant {name!r} (available: {choices})")


class InvalidHandlerVariantError(HandlerConfigError):
    """Raised when a handler variant declaration is malformed."""

    @classmethod
    def empty_name(cls) -> InvalidHandlerVariantError:
        """Return an error for a variant declared without a name."""
        return cls("Handler variant name must be non-empty")

    @classmethod
    def empty_event_type(cls, name: str) -> InvalidHandlerVariantError:
        """Return an error for a blank event type in a variant declaration."""
        return cls(f"Handler variant {name} declares an empty event type")
