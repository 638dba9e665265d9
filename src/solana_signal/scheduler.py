"""Single-flight periodic job scheduler.

Each job owns an interval timer. Every tick spawns the job's cycle as a
task; if the previous cycle of the same job is still running, the tick is
a no-op and is counted as skipped.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)

JobFunc = Callable[[], Awaitable[Any]]


class JobState(str, Enum):
    """Whether a job currently has a cycle in flight."""

    IDLE = "idle"
    RUNNING = "running"


@dataclass
class JobStats:
    """Statistics for one periodic job."""

    runs: int = 0
    failures: int = 0
    skipped: int = 0
    last_started: datetime | None = None
    last_finished: datetime | None = None
    last_error: str | None = None


class PeriodicJob:
    """A named cycle with an explicit IDLE/RUNNING guard."""

    def __init__(self, name: str, interval_seconds: float, func: JobFunc) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        self.name = name
        self.interval_seconds = interval_seconds
        self._func = func
        self._state = JobState.IDLE
        self._stats = JobStats()
        self._tasks: set[asyncio.Task[bool]] = set()

    @property
    def state(self) -> JobState:
        return self._state

    @property
    def stats(self) -> JobStats:
        return self._stats

    async def run_once(self) -> bool:
        """Run one cycle unless one is already in flight.

        Returns:
            True if a cycle ran, False if the call was skipped.
        """
        # Check-and-set happens before the first await, so it cannot interleave.
        if self._state == JobState.RUNNING:
            self._stats.skipped += 1
            logger.debug("Job %s still running; skipping trigger", self.name)
            return False

        self._state = JobState.RUNNING
        self._stats.runs += 1
        self._stats.last_started = datetime.now(UTC)
        try:
            await self._func()
            self._stats.last_error = None
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._stats.failures += 1
            self._stats.last_error = str(e)
            logger.error("Job %s failed: %s", self.name, e)
        finally:
            self._state = JobState.IDLE
            self._stats.last_finished = datetime.now(UTC)
        return True

    def spawn(self) -> asyncio.Task[bool]:
        """Start :meth:`run_once` as a background task."""
        task = asyncio.create_task(self.run_once(), name=f"job:{self.name}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def cancel_in_flight(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._tasks.clear()


class Scheduler:
    """Runs a set of :class:`PeriodicJob` timers on the event loop.

    Example:
        ```python
        scheduler = Scheduler()
        scheduler.add_job("liquidity", 60.0, poller.run_cycle)
        await scheduler.start()
        ...
        await scheduler.stop()
        ```
    """

    def __init__(self) -> None:
        self._jobs: dict[str, PeriodicJob] = {}
        self._timers: list[asyncio.Task[None]] = []
        self._stop_event: asyncio.Event | None = None

    @property
    def is_running(self) -> bool:
        return self._stop_event is not None and not self._stop_event.is_set()

    @property
    def jobs(self) -> dict[str, PeriodicJob]:
        return dict(self._jobs)

    def add_job(self, name: str, interval_seconds: float, func: JobFunc) -> PeriodicJob:
        if name in self._jobs:
            raise ValueError(f"Job already registered: {name}")
        if self.is_running:
            raise RuntimeError("Cannot add jobs while the scheduler is running")
        job = PeriodicJob(name, interval_seconds, func)
        self._jobs[name] = job
        return job

    def get(self, name: str) -> PeriodicJob:
        try:
            return self._jobs[name]
        except KeyError:
            raise KeyError(f"Unknown job: {name}") from None

    async def trigger(self, name: str) -> bool:
        """Run one cycle of ``name`` now, subject to the single-flight guard."""
        return await self.get(name).run_once()

    async def start(self) -> None:
        """Start every job: one cycle immediately, then one per interval."""
        if self.is_running:
            raise RuntimeError("Scheduler is already running")
        self._stop_event = asyncio.Event()
        for job in self._jobs.values():
            self._timers.append(
                asyncio.create_task(self._timer_loop(job), name=f"timer:{job.name}")
            )
        logger.info("Scheduler started with %d jobs", len(self._jobs))

    async def stop(self) -> None:
        """Cancel timers and any in-flight cycles."""
        if self._stop_event is None:
            return
        self._stop_event.set()

        for timer in self._timers:
            timer.cancel()
        for timer in self._timers:
            with contextlib.suppress(asyncio.CancelledError):
                await timer
        self._timers.clear()

        for job in self._jobs.values():
            await job.cancel_in_flight()

        self._stop_event = None
        logger.info("Scheduler stopped")

    async def _timer_loop(self, job: PeriodicJob) -> None:
        stop_event = self._stop_event
        if stop_event is None:
            return

        job.spawn()
        while not stop_event.is_set():
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=job.interval_seconds)
                break
            except TimeoutError:
                pass
            job.spawn()
