"""Bounded-concurrency dispatch of build event streams to handlers."""

from __future__ import annotations

from .config import DispatcherConfig
from .errors import DispatcherConfigError, SchedulerStateError
from .observability import (
    DispatchEventLogger,
    DispatchEventType,
    ErrorCategory,
    categorize_error,
)
from .outcome import Completed, Failed, StreamOutcome
from .processor import BuildStreamProcessor, ProcessorConfig, ProcessorState
from .scheduler import AdmissionScheduler, OverflowPolicy, SchedulerStats
from .service import BuildDispatchService
from .subscriber import BuildFeedSubscriber, SubscriberConfig

__all__ = [
    "AdmissionScheduler",
    "BuildDispatchService",
    "BuildFeedSubscriber",
    "BuildStreamProcessor",
    "Completed",
    "DispatchEventLogger",
    "DispatchEventType",
    "DispatcherConfig",
    "DispatcherConfigError",
    "ErrorCategory",
    "Failed",
    "OverflowPolicy",
    "ProcessorConfig",
    "ProcessorState",
    "SchedulerStateError",
    "SchedulerStats",
    "StreamOutcome",
    "SubscriberConfig",
    "categorize_error",
]
