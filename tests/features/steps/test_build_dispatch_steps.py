"""Behavioural tests for build admission and event dispatch."""

from __future__ import annotations

import asyncio
import typing as typ

import httpx
import pytest
from pytest_bdd import given, parsers, scenario, then, when

from buildwatch.dispatch import (
    BuildDispatchService,
    BuildStreamProcessor,
    Failed,
)
from buildwatch.handlers import (
    BuildMetric,
    CapabilityRegistry,
    HandlerFactory,
    HandlerVariant,
    resolve_variants,
)
from tests.helpers.export_fakes import (
    FakeExportSource,
    build_event_message,
    build_message,
    make_build,
)

if typ.TYPE_CHECKING:
    from buildwatch.dispatch import StreamOutcome
    from tests.helpers.export_fakes import ScriptItem


def run_async[T](coro: typ.Coroutine[typ.Any, typ.Any, T]) -> T:
    """Run async coroutines in sync BDD step functions."""
    return asyncio.run(coro)


class DispatchContext(typ.TypedDict, total=False):
    """Shared state used by dispatch BDD steps."""

    max_concurrent: int
    announced: list[str]
    build_events: dict[str, list[ScriptItem]]
    source: FakeExportSource
    metrics: list[BuildMetric]
    processor_factory: HandlerFactory
    completions: list[str]
    outcome: StreamOutcome
    second_finish: bool


@scenario("../build_dispatch.feature", "A single slot serialises announced builds")
def test_single_slot_serialises_builds() -> None:
    """Behavioural test: one slot means one open build stream at a time."""


@scenario(
    "../build_dispatch.feature",
    "Build duration is computed from start and finish events",
)
def test_build_duration_is_computed() -> None:
    """Behavioural test: the duration handler reports finish minus start."""


@scenario("../build_dispatch.feature", "Cacheable tasks are counted on completion")
def test_cacheable_tasks_are_counted() -> None:
    """Behavioural test: the cacheable count is reported when the build ends."""


@scenario(
    "../build_dispatch.feature",
    "Successive errors close a build stream only once",
)
def test_successive_errors_close_once() -> None:
    """Behavioural test: the close sequence is not repeated."""


@pytest.fixture
def dispatch_context() -> DispatchContext:
    """Provide shared state for dispatch scenarios."""
    return {"announced": [], "build_events": {}, "metrics": []}


def _announce(
    context: DispatchContext, build_id: str, events: list[ScriptItem]
) -> None:
    context["announced"].append(build_id)
    context["build_events"][build_id] = events


@given(
    parsers.re(r"a dispatcher allowing (?P<limit>\d+) concurrent builds?"),
    converters={"limit": int},
)
def given_dispatcher(dispatch_context: DispatchContext, limit: int) -> None:
    """Configure the concurrency ceiling."""
    dispatch_context["max_concurrent"] = limit


@given(parsers.parse('builds "{first}" and "{second}" are announced in that order'))
def given_two_builds(
    dispatch_context: DispatchContext, first: str, second: str
) -> None:
    """Announce two builds whose streams carry a start and finish event."""
    for build_id in (first, second):
        _announce(
            dispatch_context,
            build_id,
            [
                build_event_message("BuildStarted", timestamp=1),
                build_event_message("BuildFinished", timestamp=2),
            ],
        )


@given(
    parsers.parse(
        'build "{build_id}" emits BuildStarted at {started:d} '
        "and BuildFinished at {finished:d}"
    )
)
def given_timed_build(
    dispatch_context: DispatchContext, build_id: str, started: int, finished: int
) -> None:
    """Announce a build with start and finish timestamps."""
    _announce(
        dispatch_context,
        build_id,
        [
            build_event_message("BuildStarted", timestamp=started),
            build_event_message("BuildFinished", timestamp=finished),
        ],
    )


@given(
    parsers.parse(
        'build "{build_id}" finishes tasks with cacheable flags "{flags}"'
    )
)
def given_cacheable_tasks(
    dispatch_context: DispatchContext, build_id: str, flags: str
) -> None:
    """Announce a build whose tasks carry the given cacheable flags."""
    _announce(
        dispatch_context,
        build_id,
        [
            build_event_message(
                "TaskFinished", data={"cacheable": flag.strip() == "true"}
            )
            for flag in flags.split(",")
        ],
    )


@when("the dispatcher processes the announcements")
def when_dispatcher_processes(dispatch_context: DispatchContext) -> None:
    """Run one announcement connection and wait for every build to finish."""
    source = FakeExportSource(
        connections=[
            [build_message(build_id) for build_id in dispatch_context["announced"]]
        ],
        build_events=dispatch_context["build_events"],
    )
    service = BuildDispatchService(
        source,
        resolve_variants(sink=dispatch_context["metrics"].append),
        max_concurrent=dispatch_context["max_concurrent"],
    )

    async def _process() -> None:
        await service.subscriber.run_once()
        await asyncio.wait_for(service.scheduler.join(), timeout=5)
        await service.aclose()

    run_async(_process())
    dispatch_context["source"] = source


@then(
    parsers.parse(
        'the event stream of "{later}" opens only after '
        'the stream of "{earlier}" closed'
    )
)
def then_streams_are_serialised(
    dispatch_context: DispatchContext, later: str, earlier: str
) -> None:
    """Assert the later build's stream opened after the earlier one closed."""
    timeline = dispatch_context["source"].timeline
    assert timeline.index(f"close:{earlier}") < timeline.index(f"open:{later}")


@then(parsers.parse("at most {limit:d} build stream was open at once"))
def then_open_streams_bounded(dispatch_context: DispatchContext, limit: int) -> None:
    """Assert the concurrency ceiling held."""
    assert dispatch_context["source"].max_open_streams <= limit


@then(parsers.parse('the metric "{name}" for "{build_id}" is {value:d}'))
def then_metric_value(
    dispatch_context: DispatchContext, name: str, build_id: str, value: int
) -> None:
    """Assert the reported metric value."""
    assert BuildMetric(build_id=build_id, name=name, value=value) in (
        dispatch_context["metrics"]
    )


class _CompletionCounter:
    def __init__(self, completions: list[str]) -> None:
        self.completions = completions

    def on_task_finished(self, event: object) -> None:
        del event

    def complete(self) -> None:
        self.completions.append("complete")


@given(
    parsers.parse(
        'a processor for build "{build_id}" with a completion-counting handler'
    )
)
def given_processor(dispatch_context: DispatchContext, build_id: str) -> None:
    """Prepare a processor whose handler counts completion calls."""
    completions: list[str] = []
    dispatch_context["completions"] = completions
    dispatch_context["announced"].append(build_id)
    variant = HandlerVariant(
        name="completion-counter",
        factory=lambda _build: _CompletionCounter(completions),
        event_handlers={"TaskFinished": _CompletionCounter.on_task_finished},
        on_complete=_CompletionCounter.complete,
    )
    factory = HandlerFactory(CapabilityRegistry([variant]))
    dispatch_context["processor_factory"] = factory


@given(
    parsers.parse(
        'the event stream of "{build_id}" fails twice in immediate succession'
    )
)
def given_failing_stream(dispatch_context: DispatchContext, build_id: str) -> None:
    """Script a stream that errors; the second error is signalled on close."""
    dispatch_context["build_events"][build_id] = [
        build_event_message("TaskFinished"),
        httpx.ReadError("first error"),
    ]


@when("the processor runs to its outcome")
def when_processor_runs(dispatch_context: DispatchContext) -> None:
    """Run the processor, then deliver the second error as a close request."""
    build_id = dispatch_context["announced"][0]
    processor = BuildStreamProcessor(
        make_build(build_id),
        FakeExportSource(build_events=dispatch_context["build_events"]),
        dispatch_context["processor_factory"],
    )
    dispatch_context["outcome"] = run_async(processor.run())
    dispatch_context["second_finish"] = processor.finish(
        Failed(reason="second error")
    )


@then("the outcome is a failure")
def then_outcome_failed(dispatch_context: DispatchContext) -> None:
    """Assert the first error determined the outcome."""
    outcome = dispatch_context["outcome"]
    assert isinstance(outcome, Failed)
    assert outcome.reason == "first error"


@then("the completion hook ran exactly once")
def then_completion_once(dispatch_context: DispatchContext) -> None:
    """Assert the close sequence executed only once."""
    assert dispatch_context["completions"] == ["complete"]
    assert dispatch_context["second_finish"] is False
