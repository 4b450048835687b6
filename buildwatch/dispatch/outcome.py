"""Terminal outcomes of a per-build event stream."""

from __future__ import annotations

import dataclasses


@dataclasses.dataclass(frozen=True, slots=True)
class Completed:
    """The server ended the build's event stream normally."""

    events_received: int = 0


@dataclasses.dataclass(frozen=True, slots=True)
class Failed:
    """The build's event stream ended because of an error or timeout."""

    reason: str
    events_received: int = 0
    error: BaseException | None = dataclasses.field(default=None, compare=False)


type StreamOutcome = Completed | Failed
