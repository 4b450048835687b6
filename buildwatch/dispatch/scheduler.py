"""Admission control over concurrently processed builds.

The scheduler owns the only state shared between builds: the FIFO queue of
announced builds waiting for a slot and the set of builds currently holding
one. Every mutation happens synchronously inside a single event-loop turn,
so no locking is needed.

Releasing a slot never admits the next build directly. The admission
attempt is scheduled with ``loop.call_soon`` instead, which keeps the call
stack flat during bursts of completions and lets builds announced in the
meantime join the queue before the next admission round.
"""

from __future__ import annotations

import asyncio
import collections
import dataclasses
import enum
import functools
import typing as typ

from .errors import SchedulerStateError
from .observability import DispatchEventLogger
from .outcome import Failed

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from buildwatch.export.models import Build

    from .outcome import StreamOutcome

    type BuildRunner = cabc.Callable[[Build], cabc.Awaitable[StreamOutcome]]


DEFAULT_MAX_REMEMBERED = 4096


class OverflowPolicy(enum.StrEnum):
    """What to do when a bounded pending queue is full."""

    REJECT_NEW = "reject_new"
    DROP_OLDEST = "drop_oldest"


@dataclasses.dataclass(slots=True)
class SchedulerStats:
    """Running counters for admission decisions and build outcomes."""

    enqueued: int = 0
    admitted: int = 0
    completed: int = 0
    failed: int = 0
    rejected: int = 0
    dropped: int = 0
    duplicates: int = 0


class AdmissionScheduler:
    """Bounded-concurrency FIFO admission of builds to a runner coroutine."""

    def __init__(
        self,
        runner: BuildRunner,
        *,
        max_concurrent: int,
        max_pending: int | None = None,
        overflow_policy: OverflowPolicy = OverflowPolicy.REJECT_NEW,
        max_remembered: int = DEFAULT_MAX_REMEMBERED,
        event_logger: DispatchEventLogger | None = None,
    ) -> None:
        """Create a scheduler that runs at most ``max_concurrent`` builds.

        The ids of the last ``max_remembered`` finished builds are kept so
        that an announcement replayed after a feed reconnect is refused.
        """
        if max_concurrent < 1:
            msg = f"max_concurrent must be positive, got: {max_concurrent}"
            raise ValueError(msg)
        if max_pending is not None and max_pending < 1:
            msg = f"max_pending must be positive, got: {max_pending}"
            raise ValueError(msg)
        if max_remembered < 0:
            msg = f"max_remembered must not be negative, got: {max_remembered}"
            raise ValueError(msg)
        self._runner = runner
        self._max_concurrent = max_concurrent
        self._max_pending = max_pending
        self._overflow_policy = OverflowPolicy(overflow_policy)
        self._event_logger = event_logger or DispatchEventLogger()
        self._pending: collections.deque[Build] = collections.deque()
        self._pending_ids: set[str] = set()
        self._active: set[str] = set()
        self._finished: collections.OrderedDict[str, None] = collections.OrderedDict()
        self._max_remembered = max_remembered
        self._active_count = 0
        self._tasks: set[asyncio.Task[StreamOutcome]] = set()
        self._idle = asyncio.Event()
        self._idle.set()
        self._closed = False
        self.stats = SchedulerStats()

    @property
    def max_concurrent(self) -> int:
        """Return the concurrency ceiling."""
        return self._max_concurrent

    @property
    def active_count(self) -> int:
        """Return the number of builds currently holding a slot."""
        return self._active_count

    @property
    def pending_count(self) -> int:
        """Return the number of builds waiting for a slot."""
        return len(self._pending)

    @property
    def pending_builds(self) -> tuple[Build, ...]:
        """Return the queued builds, head first."""
        return tuple(self._pending)

    @property
    def closed(self) -> bool:
        """Return True once :meth:`aclose` has been called."""
        return self._closed

    def enqueue(self, build: Build) -> bool:
        """Queue ``build`` at the tail and try to admit pending builds.

        Returns
        -------
        bool
            True when the build was queued, False when it was refused as a
            duplicate of a pending, active or recently finished build, or
            because the bounded queue is full.

        """
        if self._closed:
            raise SchedulerStateError.closed()

        build_id = build.build_id
        if (
            build_id in self._pending_ids
            or build_id in self._active
            or build_id in self._finished
        ):
            self.stats.duplicates += 1
            self._event_logger.log_build_rejected(build_id, reason="duplicate")
            return False

        if self._max_pending is not None and len(self._pending) >= self._max_pending:
            if self._overflow_policy is OverflowPolicy.REJECT_NEW:
                self.stats.rejected += 1
                self._event_logger.log_build_rejected(build_id, reason="queue_full")
                return False
            dropped = self._pending.popleft()
            self._pending_ids.discard(dropped.build_id)
            self.stats.dropped += 1
            self._event_logger.log_build_dropped(
                dropped.build_id, pending=len(self._pending)
            )

        self._pending.append(build)
        self._pending_ids.add(build_id)
        self.stats.enqueued += 1
        self._idle.clear()
        self._event_logger.log_build_enqueued(build_id, pending=len(self._pending))
        self.attempt_admission()
        return True

    def attempt_admission(self) -> int:
        """Admit queued builds while slots are free; return how many started."""
        if self._closed:
            return 0
        admitted = 0
        while self._pending and self._active_count < self._max_concurrent:
            build = self._pending.popleft()
            self._pending_ids.discard(build.build_id)
            self._active.add(build.build_id)
            self._active_count += 1
            self.stats.admitted += 1
            task = asyncio.create_task(
                self._runner(build), name=f"buildwatch-build-{build.build_id}"
            )
            self._tasks.add(task)
            task.add_done_callback(functools.partial(self._on_build_done, build))
            self._event_logger.log_build_admitted(
                build.build_id,
                active=self._active_count,
                pending=len(self._pending),
            )
            admitted += 1
        self._update_idle()
        return admitted

    def release(self, build_id: str) -> None:
        """Free the slot held by ``build_id`` and schedule an admission round.

        Raises
        ------
        SchedulerStateError
            If the build does not currently hold a slot.

        """
        if build_id not in self._active:
            raise SchedulerStateError.not_active(build_id)
        self._active.discard(build_id)
        self._active_count -= 1
        self._remember(build_id)
        if not self._closed:
            asyncio.get_running_loop().call_soon(self.attempt_admission)
        self._update_idle()

    async def join(self) -> None:
        """Wait until no build is pending or active."""
        await self._idle.wait()

    async def aclose(self) -> None:
        """Discard pending builds and cancel the ones being processed."""
        self._closed = True
        self._pending.clear()
        self._pending_ids.clear()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._update_idle()

    def _on_build_done(self, build: Build, task: asyncio.Task[StreamOutcome]) -> None:
        """Record the outcome of a finished runner task and free its slot."""
        self._tasks.discard(task)
        if task.cancelled():
            self.stats.failed += 1
        elif task.exception() is not None:
            # The runner reports its own failure before raising.
            self.stats.failed += 1
        elif isinstance(task.result(), Failed):
            self.stats.failed += 1
        else:
            self.stats.completed += 1
        # The slot may already have been released explicitly.
        if build.build_id in self._active:
            self.release(build.build_id)

    def _remember(self, build_id: str) -> None:
        if not self._max_remembered:
            return
        self._finished[build_id] = None
        self._finished.move_to_end(build_id)
        while len(self._finished) > self._max_remembered:
            self._finished.popitem(last=False)

    def _update_idle(self) -> None:
        if not self._pending and self._active_count == 0:
            self._idle.set()
        else:
            self._idle.clear()
