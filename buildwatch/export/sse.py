"""Server-sent event framing for the build export feeds.

The export API streams ``text/event-stream`` responses. Each message is a
block of ``field: value`` lines terminated by a blank line; the fields used
by the export server are ``event`` (``Build`` or ``BuildEvent``), ``id`` and
``data`` (a JSON document). Comment lines start with a colon and are sent as
keep-alives.
"""

from __future__ import annotations

import dataclasses
import typing as typ

if typ.TYPE_CHECKING:
    import collections.abc as cabc

DEFAULT_EVENT_NAME = "message"


@dataclasses.dataclass(frozen=True, slots=True)
class ServerSentEvent:
    """A single dispatched server-sent event."""

    event: str = DEFAULT_EVENT_NAME
    data: str = ""
    id: str | None = None
    retry: int | None = None


class SSEDecoder:
    """Incremental decoder turning event-stream lines into events.

    Lines must be supplied without their trailing newline, which is what
    ``httpx.Response.aiter_lines`` yields.
    """

    def __init__(self) -> None:
        """Initialise an empty event buffer."""
        self._event: str | None = None
        self._data: list[str] = []
        self._last_event_id: str | None = None
        self._retry: int | None = None

    @property
    def last_event_id(self) -> str | None:
        """Return the most recent ``id`` field seen on the stream."""
        return self._last_event_id

    def feed(self, line: str) -> ServerSentEvent | None:
        """Consume one line and return an event when a block completes."""
        line = line.rstrip("\r\n")
        if not line:
            return self._dispatch()
        if line.startswith(":"):
            return None

        field, _, value = line.partition(":")
        value = value.removeprefix(" ")
        if field == "event":
            self._event = value
        elif field == "data":
            self._data.append(value)
        elif field == "id":
            # Ids containing NUL are ignored by EventSource implementations.
            if "\0" not in value:
                self._last_event_id = value
        elif field == "retry" and value.isdigit():
            self._retry = int(value)
        return None

    def _dispatch(self) -> ServerSentEvent | None:
        event_name = self._event
        data = self._data
        self._event = None
        self._data = []
        # A block without data lines carries no event.
        if not data:
            return None
        return ServerSentEvent(
            event=event_name or DEFAULT_EVENT_NAME,
            data="\n".join(data),
            id=self._last_event_id,
            retry=self._retry,
        )


async def iter_sse(
    lines: cabc.AsyncIterable[str],
) -> cabc.AsyncIterator[ServerSentEvent]:
    """Yield events decoded from an asynchronous stream of lines.

    A block left unterminated when the stream ends is discarded.
    """
    decoder = SSEDecoder()
    async for line in lines:
        event = decoder.feed(line)
        if event is not None:
            yield event
