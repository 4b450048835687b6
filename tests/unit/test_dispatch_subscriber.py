"""Unit tests for the build announcement subscriber."""

from __future__ import annotations

import typing as typ

import httpx
import pytest

from buildwatch.dispatch import BuildFeedSubscriber, SubscriberConfig
from buildwatch.export.errors import ExportAPIError
from buildwatch.export.sse import ServerSentEvent
from tests.helpers.export_fakes import FakeExportSource, build_message

if typ.TYPE_CHECKING:
    from buildwatch.dispatch import AdmissionScheduler
    from buildwatch.export.models import Build


class _RecordingScheduler:
    """Stand-in scheduler accepting each build id once."""

    def __init__(self) -> None:
        self.builds: list[Build] = []
        self.on_enqueue: typ.Callable[[Build], None] | None = None

    def enqueue(self, build: Build) -> bool:
        if self.on_enqueue is not None:
            self.on_enqueue(build)
        if any(seen.build_id == build.build_id for seen in self.builds):
            return False
        self.builds.append(build)
        return True


def _subscriber(
    source: FakeExportSource,
    scheduler: _RecordingScheduler,
    sleeps: list[float] | None = None,
    *,
    stop_after_sleeps: int = 0,
    max_delay: float = 60.0,
) -> BuildFeedSubscriber:
    recorded = sleeps if sleeps is not None else []

    async def _sleep(delay: float) -> None:
        recorded.append(delay)
        if len(recorded) >= stop_after_sleeps:
            subscriber.stop()

    subscriber = BuildFeedSubscriber(
        source,
        typ.cast("AdmissionScheduler", scheduler),
        config=SubscriberConfig(
            reconnect_delay_s=1.0, reconnect_max_delay_s=max_delay, backoff_factor=2.0
        ),
        sleep=_sleep,
    )
    return subscriber


@pytest.mark.asyncio
async def test_run_once_enqueues_announced_builds_in_order() -> None:
    """Every decodable announcement is handed to the scheduler."""
    source = FakeExportSource(
        connections=[
            [
                build_message("b1", event_id="1", buildToolType="gradle"),
                ServerSentEvent(event="Keepalive", id="2"),
                build_message("b2", event_id="3"),
            ]
        ]
    )
    scheduler = _RecordingScheduler()
    subscriber = _subscriber(source, scheduler)

    accepted = await subscriber.run_once("now")

    assert accepted == 2
    assert [build.build_id for build in scheduler.builds] == ["b1", "b2"]
    assert scheduler.builds[0].build_tool_type == "gradle"
    assert scheduler.builds[0].attributes["buildToolType"] == "gradle"
    assert subscriber.last_event_id == "3"
    assert source.builds_calls == [("now", None)]


@pytest.mark.asyncio
async def test_run_once_skips_malformed_announcements() -> None:
    """A bad payload is logged and the feed keeps going."""
    source = FakeExportSource(
        connections=[
            [
                ServerSentEvent(event="Build", data="not-json", id="1"),
                ServerSentEvent(event="Build", data='{"buildToolType": "maven"}'),
                build_message("b2", event_id="3"),
            ]
        ]
    )
    scheduler = _RecordingScheduler()

    accepted = await _subscriber(source, scheduler).run_once()

    assert accepted == 1
    assert [build.build_id for build in scheduler.builds] == ["b2"]


@pytest.mark.asyncio
async def test_run_once_does_not_count_refused_builds() -> None:
    """Builds refused by the scheduler are not reported as accepted."""
    source = FakeExportSource(
        connections=[[build_message("b1"), build_message("b1"), build_message("b2")]]
    )

    accepted = await _subscriber(source, _RecordingScheduler()).run_once()

    assert accepted == 2


@pytest.mark.asyncio
async def test_start_reconnects_with_backoff_and_resumes_from_last_id() -> None:
    """Failed connections back off; successful ones reset the delay."""
    source = FakeExportSource(
        connections=[
            [build_message("b1", event_id="1")],
            [httpx.ConnectError("refused")],
            [ExportAPIError.http_error(503, "https://x")],
            [build_message("b2", event_id="2")],
        ]
    )
    scheduler = _RecordingScheduler()
    sleeps: list[float] = []
    subscriber = _subscriber(source, scheduler, sleeps, stop_after_sleeps=4)

    await subscriber.start(1_700_000_000_000)

    assert sleeps == [1.0, 2.0, 4.0, 1.0]
    assert source.builds_calls == [
        ("1700000000000", None),
        ("1700000000000", "1"),
        ("1700000000000", "1"),
        ("1700000000000", "1"),
    ]
    assert [build.build_id for build in scheduler.builds] == ["b1", "b2"]


@pytest.mark.asyncio
async def test_start_advances_the_marker_when_the_feed_sends_no_ids() -> None:
    """Without event ids, reconnects resume from the newest announcement."""
    source = FakeExportSource(
        connections=[
            [
                build_message("b1", availableAt=1_700_000_000_500),
                build_message("b2", availableAt=1_700_000_000_900),
            ],
            [build_message("b2", availableAt=1_700_000_000_900)],
        ]
    )
    scheduler = _RecordingScheduler()
    subscriber = _subscriber(source, scheduler, stop_after_sleeps=2)

    await subscriber.start(1_700_000_000_000)

    assert source.builds_calls == [
        ("1700000000000", None),
        ("1700000000900", None),
    ]
    assert subscriber.latest_available_at == 1_700_000_000_900
    assert [build.build_id for build in scheduler.builds] == ["b1", "b2"]

@pytest.mark.asyncio
async def test_start_caps_the_reconnect_delay() -> None:
    """Backoff never exceeds the configured maximum."""
    sleeps: list[float] = []
    subscriber = _subscriber(
        FakeExportSource(),
        _RecordingScheduler(),
        sleeps,
        stop_after_sleeps=4,
        max_delay=3.0,
    )

    await subscriber.start()

    assert sleeps == [1.0, 2.0, 3.0, 3.0]


@pytest.mark.asyncio
async def test_stop_during_a_connection_ends_start_without_sleeping() -> None:
    """Stopping mid-feed returns after the current announcement."""
    source = FakeExportSource(
        connections=[[build_message("b1"), build_message("b2")]]
    )
    scheduler = _RecordingScheduler()
    sleeps: list[float] = []
    subscriber = _subscriber(source, scheduler, sleeps)
    scheduler.on_enqueue = lambda _build: subscriber.stop()

    await subscriber.start()

    assert [build.build_id for build in scheduler.builds] == ["b1"]
    assert sleeps == []


@pytest.mark.asyncio
async def test_unexpected_errors_propagate_from_start() -> None:
    """Only transport and HTTP errors trigger a reconnect."""
    source = FakeExportSource(connections=[[RuntimeError("bug")]])
    subscriber = _subscriber(source, _RecordingScheduler())

    with pytest.raises(RuntimeError, match="bug"):
        await subscriber.start()
