"""HTTP client for the build export streaming API."""

from __future__ import annotations

import dataclasses
import typing as typ
import urllib.parse

import httpx

from buildwatch.common.time import format_start_marker

from .errors import ExportAPIError, ExportConfigError
from .sse import iter_sse

if typ.TYPE_CHECKING:
    import collections.abc as cabc
    import datetime as dt

    from .sse import ServerSentEvent

_HTTP_ERROR_STATUS_THRESHOLD = 400
_EVENT_STREAM_CONTENT_TYPE = "text/event-stream"


class BuildExportSource(typ.Protocol):
    """Interface for opening the build announcement and build event feeds."""

    def stream_builds(
        self,
        since: str | int | dt.datetime,
        *,
        last_event_id: str | None = None,
    ) -> cabc.AsyncIterator[ServerSentEvent]:
        """Yield ``Build`` messages announced since the start marker."""
        ...

    def stream_build_events(
        self,
        build_id: str,
        event_types: cabc.Sequence[str],
    ) -> cabc.AsyncIterator[ServerSentEvent]:
        """Yield ``BuildEvent`` messages of the given types for one build."""
        ...


@dataclasses.dataclass(frozen=True, slots=True)
class BuildExportConfig:
    """Configuration for the build export HTTP client."""

    server_url: str
    connect_timeout_s: float = 10.0
    read_timeout_s: float | None = None
    user_agent: str = "buildwatch/0.1"


def _normalise_server_url(url: str) -> str:
    parsed = urllib.parse.urlsplit(url.strip())
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ExportConfigError.invalid_server_url(url)
    return url.strip().rstrip("/")


class BuildExportClient:
    """httpx implementation of :class:`BuildExportSource`."""

    def __init__(
        self,
        config: BuildExportConfig,
        *,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialise the client with the server location and timeouts."""
        self._base_url = _normalise_server_url(config.server_url)
        self._config = config
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(
                config.read_timeout_s,
                connect=config.connect_timeout_s,
            ),
            headers={"User-Agent": config.user_agent},
        )

    async def aclose(self) -> None:
        """Close any owned HTTP resources."""
        if self._owns_client:
            await self._client.aclose()

    def builds_url(self, since: str | int | dt.datetime) -> str:
        """Return the URL of the build announcement feed."""
        marker = format_start_marker(since)
        return f"{self._base_url}/build-export/v1/builds/since/{marker}?stream"

    def build_events_url(self, build_id: str, event_types: cabc.Sequence[str]) -> str:
        """Return the URL of one build's event feed filtered to ``event_types``."""
        quoted_id = urllib.parse.quote(build_id, safe="")
        query = urllib.parse.urlencode({"eventTypes": ",".join(event_types)}, safe=",")
        return f"{self._base_url}/build-export/v1/build/{quoted_id}/events?{query}"

    async def stream_builds(
        self,
        since: str | int | dt.datetime,
        *,
        last_event_id: str | None = None,
    ) -> cabc.AsyncIterator[ServerSentEvent]:
        """Yield messages from the build announcement feed."""
        headers = {"Last-Event-ID": last_event_id} if last_event_id else {}
        async for event in self._stream(self.builds_url(since), headers):
            yield event

    async def stream_build_events(
        self,
        build_id: str,
        event_types: cabc.Sequence[str],
    ) -> cabc.AsyncIterator[ServerSentEvent]:
        """Yield messages from one build's event feed."""
        url = self.build_events_url(build_id, event_types)
        async for event in self._stream(url, {}):
            yield event

    async def _stream(
        self, url: str, headers: dict[str, str]
    ) -> cabc.AsyncIterator[ServerSentEvent]:
        """Open an event-stream request and yield its decoded messages."""
        request_headers = {"Accept": _EVENT_STREAM_CONTENT_TYPE, **headers}
        async with self._client.stream("GET", url, headers=request_headers) as response:
            if response.status_code >= _HTTP_ERROR_STATUS_THRESHOLD:
                raise ExportAPIError.http_error(response.status_code, url)
            content_type = response.headers.get("content-type", "")
            if _EVENT_STREAM_CONTENT_TYPE not in content_type:
                raise ExportAPIError.unexpected_content_type(content_type)
            async for event in iter_sse(response.aiter_lines()):
                yield event
