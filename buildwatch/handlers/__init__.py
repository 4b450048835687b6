"""Handler variants, capability discovery, and dispatch table assembly."""

from __future__ import annotations

from .builtin import (
    BUILTIN_VARIANTS,
    BuildDurationHandler,
    BuildMetric,
    CacheableTaskCountHandler,
    MetricSink,
    build_duration_variant,
    cacheable_tasks_variant,
    log_metric,
    resolve_variants,
)
from .errors import (
    DuplicateHandlerError,
    HandlerConfigError,
    InvalidHandlerVariantError,
    UnknownHandlerError,
)
from .factory import CompletionHook, DispatchTable, HandlerFactory, Subscription
from .registry import Capability, CapabilityRegistry
from .variant import HandlerVariant

__all__ = [
    "BUILTIN_VARIANTS",
    "BuildDurationHandler",
    "BuildMetric",
    "CacheableTaskCountHandler",
    "Capability",
    "CapabilityRegistry",
    "CompletionHook",
    "DispatchTable",
    "DuplicateHandlerError",
    "HandlerConfigError",
    "HandlerFactory",
    "HandlerVariant",
    "InvalidHandlerVariantError",
    "MetricSink",
    "Subscription",
    "UnknownHandlerError",
    "build_duration_variant",
    "cacheable_tasks_variant",
    "log_metric",
    "resolve_variants",
]
