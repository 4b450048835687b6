"""Per-build event stream processing.

A processor is created for each admitted build. It builds the build's
dispatch table, opens the build's event feed filtered to exactly the event
types some handler declared, and routes each decoded event to the
subscribed handler instances in declaration order.

The processor moves through ``OPEN -> CLOSING -> CLOSED``. The transition
out of ``OPEN`` happens in :meth:`BuildStreamProcessor.finish`, which is
guarded so that completion hooks run exactly once however many times the
stream signals its end.
"""

from __future__ import annotations

import asyncio
import contextlib
import dataclasses
import enum
import typing as typ

import httpx
import msgspec

from buildwatch.common.time import utcnow
from buildwatch.export.errors import ExportAPIError
from buildwatch.export.models import decode_build_event

from .observability import DispatchEventLogger
from .outcome import Completed, Failed

if typ.TYPE_CHECKING:
    import collections.abc as cabc
    import datetime as dt

    from buildwatch.export.client import BuildExportSource
    from buildwatch.export.models import Build, BuildEvent
    from buildwatch.export.sse import ServerSentEvent
    from buildwatch.handlers.factory import DispatchTable, HandlerFactory

    from .outcome import StreamOutcome

BUILD_EVENT_MESSAGE = "BuildEvent"


class ProcessorState(enum.StrEnum):
    """Lifecycle states of a per-build stream processor."""

    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


@dataclasses.dataclass(frozen=True, slots=True)
class ProcessorConfig:
    """Runtime knobs for per-build stream processing.

    Attributes
    ----------
    idle_timeout_s
        Seconds without any message after which the stream is abandoned
        and reported as failed. ``None`` waits forever.

    """

    idle_timeout_s: float | None = 300.0


class BuildStreamProcessor:
    """Consume one build's event feed and drive its handlers."""

    def __init__(
        self,
        build: Build,
        source: BuildExportSource,
        factory: HandlerFactory,
        *,
        config: ProcessorConfig | None = None,
        event_logger: DispatchEventLogger | None = None,
    ) -> None:
        """Bind the processor to a build, an event source, and a factory."""
        self._build = build
        self._source = source
        self._factory = factory
        self._config = config or ProcessorConfig()
        self._event_logger = event_logger or DispatchEventLogger()
        self._state = ProcessorState.OPEN
        self._closed = False
        self._table: DispatchTable | None = None
        self._consumer: asyncio.Task[StreamOutcome] | None = None
        self._outcome: StreamOutcome | None = None
        self._started_at: dt.datetime | None = None
        self.events_received = 0
        self.payloads_rejected = 0

    @property
    def build(self) -> Build:
        """Return the build this processor handles."""
        return self._build

    @property
    def state(self) -> ProcessorState:
        """Return the current lifecycle state."""
        return self._state

    @property
    def outcome(self) -> StreamOutcome | None:
        """Return the terminal outcome once the processor has closed."""
        return self._outcome

    @property
    def dispatch_table(self) -> DispatchTable:
        """Return the dispatch table, creating it on first access."""
        if self._table is None:
            self._table = self._factory.create_dispatch_table(self._build)
        return self._table

    async def run(self) -> StreamOutcome:
        """Process the build's event stream until it ends.

        Transport and HTTP failures and the idle timeout are reported as
        :class:`Failed`; a stream the server closes is :class:`Completed`.
        Completion hooks run once in either case. A processor already
        closed by :meth:`finish` returns its recorded outcome.
        """
        if self._closed:
            return typ.cast("StreamOutcome", self._outcome)
        self._started_at = utcnow()
        event_types = self.dispatch_table.event_types
        if not event_types:
            self.finish(Completed(events_received=0))
            return typ.cast("StreamOutcome", self._outcome)

        stream = self._source.stream_build_events(self._build.build_id, event_types)
        self._consumer = asyncio.create_task(
            self._consume(stream), name=f"buildwatch-stream-{self._build.build_id}"
        )
        try:
            outcome: StreamOutcome = await self._consumer
        except asyncio.CancelledError:
            if self._closed_by_finish():
                return typ.cast("StreamOutcome", self._outcome)
            self.finish(
                Failed(reason="cancelled", events_received=self.events_received)
            )
            raise
        except TimeoutError as exc:
            outcome = Failed(
                reason=f"idle_timeout after {self._config.idle_timeout_s}s",
                events_received=self.events_received,
                error=exc,
            )
        except (httpx.HTTPError, ExportAPIError) as exc:
            outcome = Failed(
                reason=str(exc) or type(exc).__name__,
                events_received=self.events_received,
                error=exc,
            )
        except Exception as exc:
            self.finish(
                Failed(
                    reason="unexpected_error",
                    events_received=self.events_received,
                    error=exc,
                )
            )
            raise
        self.finish(outcome)
        return typ.cast("StreamOutcome", self._outcome)

    async def _consume(
        self, stream: cabc.AsyncIterator[ServerSentEvent]
    ) -> StreamOutcome:
        """Read messages until the server ends the stream or the processor closes."""
        idle_timeout = self._config.idle_timeout_s
        loop = asyncio.get_running_loop()
        async with (
            contextlib.aclosing(stream) as messages,
            asyncio.timeout(idle_timeout) as deadline,
        ):
            async for message in messages:
                self.handle_message(message)
                if self._closed:
                    break
                if idle_timeout is not None:
                    deadline.reschedule(loop.time() + idle_timeout)
        return Completed(events_received=self.events_received)

    def handle_message(self, message: ServerSentEvent) -> None:
        """Decode a feed message and dispatch it; ignored once closing."""
        if self._state is not ProcessorState.OPEN:
            return
        if message.event != BUILD_EVENT_MESSAGE:
            return
        try:
            event = decode_build_event(message.data)
        except msgspec.MsgspecError as exc:
            self.payloads_rejected += 1
            self._event_logger.log_payload_rejected(
                build_id=self._build.build_id,
                message_event=message.event,
                error=exc,
            )
            return
        self.events_received += 1
        self.dispatch(event)

    def dispatch(self, event: BuildEvent) -> int:
        """Deliver ``event`` to its subscribers; return successful deliveries.

        A subscriber that raises is logged and skipped; the remaining
        subscribers still receive the event.
        """
        delivered = 0
        for subscription in self.dispatch_table.subscribers(event.event_type):
            try:
                subscription.callback(event)
            except Exception as exc:  # noqa: BLE001 - handler faults stay with the handler
                self._event_logger.log_handler_failed(
                    self._build.build_id,
                    variant_name=subscription.variant_name,
                    stage=event.event_type,
                    error=exc,
                )
            else:
                delivered += 1
        return delivered

    def finish(self, outcome: StreamOutcome) -> bool:
        """Close the processor with ``outcome``.

        The first call runs every completion hook once, in declaration
        order, closes the build's event stream and records the outcome. Later
        calls do nothing.

        Returns
        -------
        bool
            True if this call closed the processor, False if it was already
            closed.

        """
        if self._closed:
            return False
        self._closed = True
        self._state = ProcessorState.CLOSING

        for hook in self.dispatch_table.completions:
            try:
                hook.callback()
            except Exception as exc:  # noqa: BLE001 - handler faults stay with the handler
                self._event_logger.log_handler_failed(
                    self._build.build_id,
                    variant_name=hook.variant_name,
                    stage="complete",
                    error=exc,
                )
        self._close_stream()

        self._outcome = outcome
        self._state = ProcessorState.CLOSED
        self._log_outcome(outcome)
        return True

    def _close_stream(self) -> None:
        """Cancel the consuming task unless it is the caller."""
        consumer = self._consumer
        if consumer is None or consumer.done():
            return
        if consumer is not asyncio.current_task():
            consumer.cancel()

    def _closed_by_finish(self) -> bool:
        """Return True when the consumer was cancelled by :meth:`finish` only."""
        current = asyncio.current_task()
        return self._closed and (current is None or not current.cancelling())

    def _log_outcome(self, outcome: StreamOutcome) -> None:
        duration = None if self._started_at is None else utcnow() - self._started_at
        if isinstance(outcome, Completed):
            self._event_logger.log_build_completed(
                self._build.build_id,
                events_received=outcome.events_received,
                duration=duration,
            )
            return
        self._event_logger.log_build_failed(
            self._build.build_id,
            reason=outcome.reason,
            error=outcome.error,
            duration=duration,
        )
