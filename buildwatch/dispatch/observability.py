"""Structured lifecycle events for the build dispatcher.

Every feed connection, admission decision, and per-build stream outcome is
emitted as a single log line of the form ``[dispatch.<event>] key=value ...``
so log aggregators can parse throughput and failure rates without a metrics
backend.
"""

from __future__ import annotations

import enum
import typing as typ

import httpx
import msgspec

from buildwatch.export.errors import ExportAPIError, ExportConfigError
from buildwatch.handlers.errors import HandlerConfigError
from buildwatch.logging import get_logger, log_error, log_info, log_warning

from .errors import DispatcherConfigError

if typ.TYPE_CHECKING:
    import datetime as dt

logger = get_logger(__name__)

_HTTP_SERVER_ERROR_THRESHOLD = 500


class DispatchEventType(enum.StrEnum):
    """Structured log event types emitted by the dispatcher."""

    FEED_CONNECTED = "dispatch.feed.connected"
    FEED_DISCONNECTED = "dispatch.feed.disconnected"
    BUILD_ENQUEUED = "dispatch.build.enqueued"
    BUILD_REJECTED = "dispatch.build.rejected"
    BUILD_DROPPED = "dispatch.build.dropped"
    BUILD_ADMITTED = "dispatch.build.admitted"
    BUILD_COMPLETED = "dispatch.build.completed"
    BUILD_FAILED = "dispatch.build.failed"
    PAYLOAD_REJECTED = "dispatch.payload.rejected"
    HANDLER_FAILED = "dispatch.handler.failed"


class ErrorCategory(enum.StrEnum):
    """Categories for error classification in alerts."""

    TRANSIENT = "transient"
    CLIENT_ERROR = "client_error"
    PAYLOAD = "payload"
    HANDLER = "handler"
    CONFIGURATION = "configuration"
    UNKNOWN = "unknown"


_EXCEPTION_CATEGORY_MAP: tuple[tuple[type[BaseException], ErrorCategory], ...] = (
    (httpx.TransportError, ErrorCategory.TRANSIENT),
    (TimeoutError, ErrorCategory.TRANSIENT),
    (msgspec.MsgspecError, ErrorCategory.PAYLOAD),
    (ExportConfigError, ErrorCategory.CONFIGURATION),
    (HandlerConfigError, ErrorCategory.CONFIGURATION),
    (DispatcherConfigError, ErrorCategory.CONFIGURATION),
)


def categorize_error(exc: BaseException) -> ErrorCategory:
    """Categorize an exception for alerting purposes.

    Returns:
        ErrorCategory indicating the type of failure for alert routing.

    """
    if isinstance(exc, ExportAPIError):
        if (
            exc.status_code is not None
            and exc.status_code >= _HTTP_SERVER_ERROR_THRESHOLD
        ):
            return ErrorCategory.TRANSIENT
        return ErrorCategory.CLIENT_ERROR

    for exc_type, category in _EXCEPTION_CATEGORY_MAP:
        if isinstance(exc, exc_type):
            return category

    return ErrorCategory.UNKNOWN


def _format_duration(duration: dt.timedelta | None) -> str:
    return "none" if duration is None else f"{duration.total_seconds():.3f}"


class DispatchEventLogger:
    """Emit structured dispatcher events via femtologging.

    Success events are logged at INFO, admission refusals and feed
    disconnects at WARNING, and stream or handler failures at ERROR.
    """

    def log_feed_connected(self, *, since: str, last_event_id: str | None) -> None:
        """Log that the build announcement feed is being opened."""
        log_info(
            logger,
            "[%s] since=%s last_event_id=%s",
            DispatchEventType.FEED_CONNECTED,
            since,
            last_event_id,
        )

    def log_feed_disconnected(
        self,
        *,
        error: BaseException | None,
        retry_in_s: float,
    ) -> None:
        """Log that the announcement feed ended and will be reopened."""
        if error is None:
            log_info(
                logger,
                "[%s] error_category=none retry_in_seconds=%.3f",
                DispatchEventType.FEED_DISCONNECTED,
                retry_in_s,
            )
            return
        log_warning(
            logger,
            "[%s] error_type=%s error_category=%s error_message=%s "
            "retry_in_seconds=%.3f",
            DispatchEventType.FEED_DISCONNECTED,
            type(error).__name__,
            categorize_error(error),
            str(error),
            retry_in_s,
        )

    def log_build_enqueued(self, build_id: str, *, pending: int) -> None:
        """Log that a build joined the pending queue."""
        log_info(
            logger,
            "[%s] build_id=%s pending=%d",
            DispatchEventType.BUILD_ENQUEUED,
            build_id,
            pending,
        )

    def log_build_rejected(self, build_id: str, *, reason: str) -> None:
        """Log that an announced build was not queued."""
        log_warning(
            logger,
            "[%s] build_id=%s reason=%s",
            DispatchEventType.BUILD_REJECTED,
            build_id,
            reason,
        )

    def log_build_dropped(self, build_id: str, *, pending: int) -> None:
        """Log that a queued build was evicted to make room for a newer one."""
        log_warning(
            logger,
            "[%s] build_id=%s pending=%d",
            DispatchEventType.BUILD_DROPPED,
            build_id,
            pending,
        )

    def log_build_admitted(self, build_id: str, *, active: int, pending: int) -> None:
        """Log that a build took a concurrency slot."""
        log_info(
            logger,
            "[%s] build_id=%s active=%d pending=%d",
            DispatchEventType.BUILD_ADMITTED,
            build_id,
            active,
            pending,
        )

    def log_build_completed(
        self,
        build_id: str,
        *,
        events_received: int,
        duration: dt.timedelta | None = None,
    ) -> None:
        """Log that a build's stream ended normally."""
        log_info(
            logger,
            "[%s] build_id=%s events_received=%d duration_seconds=%s",
            DispatchEventType.BUILD_COMPLETED,
            build_id,
            events_received,
            _format_duration(duration),
        )

    def log_build_failed(
        self,
        build_id: str,
        *,
        reason: str,
        error: BaseException | None,
        duration: dt.timedelta | None = None,
    ) -> None:
        """Log that a build's stream ended with an error."""
        category = ErrorCategory.UNKNOWN if error is None else categorize_error(error)
        log_error(
            logger,
            "[%s] build_id=%s reason=%s error_type=%s error_category=%s "
            "duration_seconds=%s",
            DispatchEventType.BUILD_FAILED,
            build_id,
            reason,
            "none" if error is None else type(error).__name__,
            category,
            _format_duration(duration),
            exc_info=error,
        )

    def log_payload_rejected(
        self,
        *,
        build_id: str | None,
        message_event: str,
        error: BaseException,
    ) -> None:
        """Log a feed message whose payload could not be decoded."""
        log_warning(
            logger,
            "[%s] build_id=%s message_event=%s error_category=%s error_message=%s",
            DispatchEventType.PAYLOAD_REJECTED,
            build_id,
            message_event,
            ErrorCategory.PAYLOAD,
            str(error),
        )

    def log_handler_failed(
        self,
        build_id: str,
        *,
        variant_name: str,
        stage: str,
        error: BaseException,
    ) -> None:
        """Log a handler callback that raised while processing a build."""
        log_error(
            logger,
            "[%s] build_id=%s variant=%s stage=%s error_type=%s error_category=%s",
            DispatchEventType.HANDLER_FAILED,
            build_id,
            variant_name,
            stage,
            type(error).__name__,
            ErrorCategory.HANDLER,
            exc_info=error,
        )
