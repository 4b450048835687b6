"""Reference handlers computing simple per-build metrics.

``BuildDurationHandler`` reports the wall-clock duration between the
``BuildStarted`` and ``BuildFinished`` events; ``CacheableTaskCountHandler``
counts ``TaskFinished`` events flagged as cacheable and reports the total
once the build's stream has ended. Both hand their results to a
:data:`MetricSink`, which logs by default.
"""

from __future__ import annotations

import typing as typ

import msgspec

from buildwatch.logging import get_logger, log_info

from .errors import UnknownHandlerError
from .variant import HandlerVariant

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from buildwatch.export.models import Build, BuildEvent

logger = get_logger(__name__)

BUILD_DURATION = "build-duration"
CACHEABLE_TASKS = "cacheable-tasks"


class BuildMetric(msgspec.Struct, frozen=True, kw_only=True):
    """A named measurement computed for one build."""

    build_id: str
    name: str
    value: int | float


type MetricSink = cabc.Callable[[BuildMetric], None]


def log_metric(metric: BuildMetric) -> None:
    """Write a metric to the log; the default metric sink."""
    log_info(
        logger,
        "[metric] build_id=%s name=%s value=%s",
        metric.build_id,
        metric.name,
        metric.value,
    )


class BuildDurationHandler:
    """Measure the time between build start and finish."""

    def __init__(self, build: Build, *, sink: MetricSink = log_metric) -> None:
        """Start with no observed timestamps."""
        self._build = build
        self._sink = sink
        self.started_at: int | None = None
        self.finished_at: int | None = None
        self.duration_ms: int | None = None

    def on_build_started(self, event: BuildEvent) -> None:
        """Record the start timestamp."""
        self.started_at = event.timestamp
        self._emit_when_ready()

    def on_build_finished(self, event: BuildEvent) -> None:
        """Record the finish timestamp."""
        self.finished_at = event.timestamp
        self._emit_when_ready()

    def _emit_when_ready(self) -> None:
        if self.duration_ms is not None:
            return
        if self.started_at is None or self.finished_at is None:
            return
        self.duration_ms = self.finished_at - self.started_at
        self._sink(
            BuildMetric(
                build_id=self._build.build_id,
                name="build.duration_ms",
                value=self.duration_ms,
            )
        )


class CacheableTaskCountHandler:
    """Count finished tasks whose outputs were cacheable."""

    def __init__(self, build: Build, *, sink: MetricSink = log_metric) -> None:
        """Start with zeroed counters."""
        self._build = build
        self._sink = sink
        self.tasks_seen = 0
        self.cacheable = 0

    def on_task_finished(self, event: BuildEvent) -> None:
        """Count the task, and count it as cacheable when flagged so."""
        self.tasks_seen += 1
        if event.data.get("cacheable") is True:
            self.cacheable += 1

    def complete(self) -> None:
        """Report the cacheable task count for the build."""
        self._sink(
            BuildMetric(
                build_id=self._build.build_id,
                name="tasks.cacheable",
                value=self.cacheable,
            )
        )


def build_duration_variant(
    sink: MetricSink = log_metric,
) -> HandlerVariant[BuildDurationHandler]:
    """Return the variant declaration for :class:`BuildDurationHandler`."""
    return HandlerVariant(
        name=BUILD_DURATION,
        factory=lambda build: BuildDurationHandler(build, sink=sink),
        event_handlers={
            "BuildStarted": BuildDurationHandler.on_build_started,
            "BuildFinished": BuildDurationHandler.on_build_finished,
        },
    )


def cacheable_tasks_variant(
    sink: MetricSink = log_metric,
) -> HandlerVariant[CacheableTaskCountHandler]:
    """Return the variant declaration for :class:`CacheableTaskCountHandler`."""
    return HandlerVariant(
        name=CACHEABLE_TASKS,
        factory=lambda build: CacheableTaskCountHandler(build, sink=sink),
        event_handlers={"TaskFinished": CacheableTaskCountHandler.on_task_finished},
        on_complete=CacheableTaskCountHandler.complete,
    )


BUILTIN_VARIANTS: dict[str, cabc.Callable[[MetricSink], HandlerVariant[typ.Any]]] = {
    BUILD_DURATION: build_duration_variant,
    CACHEABLE_TASKS: cacheable_tasks_variant,
}


def resolve_variants(
    names: cabc.Sequence[str] | None = None,
    *,
    sink: MetricSink = log_metric,
) -> list[HandlerVariant[typ.Any]]:
    """Build the named built-in variants, or all of them when ``names`` is None.

    Raises
    ------
    UnknownHandlerError
        If a name does not match a built-in variant.

    """
    selected = list(BUILTIN_VARIANTS) if names is None else list(names)
    variants: list[HandlerVariant[typ.Any]] = []
    for name in selected:
        make_variant = BUILTIN_VARIANTS.get(name.strip())
        if make_variant is None:
            raise UnknownHandlerError(name, BUILTIN_VARIANTS)
        variants.append(make_variant(sink))
    return variants
