"""In-process interval scheduler with a bounded worker pool.

Jobs are plain coroutine functions. ``run_pending`` launches every due job
as a task and returns immediately; a semaphore caps how many run at once.
A slow job does not delay the others, and a job may overlap with its own
previous run (snapshot generation tolerates that).
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from questboard.clock import Clock

logger = logging.getLogger(__name__)

JobFunc = Callable[[], Awaitable[Any]]


@dataclass
class ScheduledJob:
    name: str
    interval: timedelta
    func: JobFunc
    next_run_at: datetime
    runs: int = 0
    failures: int = 0
    last_error: str | None = None


class Scheduler:
    def __init__(self, clock: Clock, max_workers: int = 3, tick_seconds: float = 5.0) -> None:
        self._clock = clock
        self._semaphore = asyncio.Semaphore(max_workers)
        self.tick_seconds = tick_seconds
        self.jobs: dict[str, ScheduledJob] = {}
        self._inflight: set[asyncio.Task[None]] = set()
        self._loop_task: asyncio.Task[None] | None = None

    def add_job(self, name: str, interval_seconds: float, func: JobFunc) -> ScheduledJob:
        """Register a job. It is first due immediately."""
        if interval_seconds <= 0:
            raise ValueError(f"Job interval must be positive: {interval_seconds}")
        job = ScheduledJob(
            name=name,
            interval=timedelta(seconds=interval_seconds),
            func=func,
            next_run_at=self._clock.now(),
        )
        self.jobs[name] = job
        return job

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    @property
    def inflight(self) -> int:
        return len(self._inflight)

    def run_pending(self) -> list[asyncio.Task[None]]:
        """Launch every due job without waiting for it. Returns the launched tasks."""
        now = self._clock.now()
        launched = []
        for job in self.jobs.values():
            if job.next_run_at > now:
                continue
            # Advance on the original grid; missed slots collapse into this run
            while job.next_run_at <= now:
                job.next_run_at += job.interval
            launched.append(self._launch(job))
        return launched

    def _launch(self, job: ScheduledJob) -> asyncio.Task[None]:
        task = asyncio.create_task(self._run(job), name=f"scheduler:{job.name}")
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return task

    async def _run(self, job: ScheduledJob) -> None:
        async with self._semaphore:
            try:
                await job.func()
            except Exception as exc:
                job.failures += 1
                job.last_error = str(exc)
                logger.exception("Scheduled job %s failed", job.name)
            else:
                job.runs += 1
                job.last_error = None

    async def _loop(self) -> None:
        while True:
            self.run_pending()
            await asyncio.sleep(self.tick_seconds)

    def start(self) -> None:
        """Run every job once now, then keep ticking in the background."""
        if self.running:
            return
        now = self._clock.now()
        for job in self.jobs.values():
            job.next_run_at = now
        self._loop_task = asyncio.create_task(self._loop(), name="scheduler:loop")
        logger.info("Scheduler started with %d jobs", len(self.jobs))

    async def join(self) -> None:
        """Wait until no job is in flight."""
        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    async def stop(self) -> None:
        """Stop ticking and wait for in-flight jobs to finish."""
        if self._loop_task is not None:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None
        await self.join()
        logger.info("Scheduler stopped")
