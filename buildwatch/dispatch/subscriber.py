"""Long-lived subscription to the build announcement feed."""

from __future__ import annotations

import asyncio
import contextlib
import dataclasses
import typing as typ

import httpx
import msgspec

from buildwatch.common.time import NOW_MARKER, format_start_marker
from buildwatch.export.errors import ExportAPIError
from buildwatch.export.models import decode_build

from .observability import DispatchEventLogger

if typ.TYPE_CHECKING:
    import collections.abc as cabc
    import datetime as dt

    from buildwatch.export.client import BuildExportSource

    from .scheduler import AdmissionScheduler

BUILD_MESSAGE = "Build"


@dataclasses.dataclass(frozen=True, slots=True)
class SubscriberConfig:
    """Reconnect behaviour for the announcement feed.

    The delay starts at ``reconnect_delay_s``, is multiplied by
    ``backoff_factor`` after each connection that delivered no builds, and
    never exceeds ``reconnect_max_delay_s``.
    """

    reconnect_delay_s: float = 1.0
    reconnect_max_delay_s: float = 60.0
    backoff_factor: float = 2.0


class BuildFeedSubscriber:
    """Turn build announcements into scheduler admissions."""

    def __init__(
        self,
        source: BuildExportSource,
        scheduler: AdmissionScheduler,
        *,
        config: SubscriberConfig | None = None,
        event_logger: DispatchEventLogger | None = None,
        sleep: cabc.Callable[[float], cabc.Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Bind the subscriber to an export source and a scheduler."""
        self._source = source
        self._scheduler = scheduler
        self._config = config or SubscriberConfig()
        self._event_logger = event_logger or DispatchEventLogger()
        self._sleep = sleep
        self._stopping = False
        self.last_event_id: str | None = None
        self.latest_available_at: int | None = None

    async def run_once(self, since: str | int | dt.datetime = NOW_MARKER) -> int:
        """Consume one connection of the announcement feed.

        Returns the number of builds accepted by the scheduler. Connection
        errors propagate to the caller.
        """
        marker = format_start_marker(since)
        self._event_logger.log_feed_connected(
            since=marker, last_event_id=self.last_event_id
        )
        accepted = 0
        stream = self._source.stream_builds(marker, last_event_id=self.last_event_id)
        async with contextlib.aclosing(stream) as messages:
            async for message in messages:
                if message.id is not None:
                    self.last_event_id = message.id
                if message.event != BUILD_MESSAGE:
                    continue
                try:
                    build = decode_build(message.data)
                except msgspec.MsgspecError as exc:
                    self._event_logger.log_payload_rejected(
                        build_id=None, message_event=message.event, error=exc
                    )
                    continue
                if build.available_at is not None:
                    self.latest_available_at = max(
                        build.available_at, self.latest_available_at or 0
                    )
                if self._scheduler.enqueue(build):
                    accepted += 1
                if self._stopping:
                    break
        return accepted

    async def start(self, since: str | int | dt.datetime = NOW_MARKER) -> None:
        """Follow the announcement feed until :meth:`stop` is called.

        Each reconnect resumes after the last seen message id. When the
        server sends no ids, the start marker moves forward to the newest
        ``availableAt`` seen so far instead.
        """
        marker = format_start_marker(since)
        self._stopping = False
        delay = self._config.reconnect_delay_s
        while not self._stopping:
            error: BaseException | None = None
            accepted = 0
            try:
                accepted = await self.run_once(marker)
            except (httpx.HTTPError, ExportAPIError) as exc:
                error = exc
            if self._stopping:
                break
            if self.last_event_id is None and self.latest_available_at is not None:
                marker = format_start_marker(self.latest_available_at)
            if accepted:
                delay = self._config.reconnect_delay_s
            self._event_logger.log_feed_disconnected(error=error, retry_in_s=delay)
            await self._sleep(delay)
            delay = min(
                delay * self._config.backoff_factor,
                self._config.reconnect_max_delay_s,
            )

    def stop(self) -> None:
        """Ask :meth:`start` to return after the current message."""
        self._stopping = True
