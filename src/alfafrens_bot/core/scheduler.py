"""Recurring background jobs with supervised asyncio tasks."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

JobHandler = Callable[[], Awaitable[None]]


@dataclass
class Job:
    """One recurring unit of work."""

    name: str
    interval_seconds: float
    handler: JobHandler
    run_immediately: bool = False
    runs: int = 0
    failures: int = 0
    _current: asyncio.Task | None = field(default=None, repr=False)

    @property
    def in_flight(self) -> bool:
        return self._current is not None and not self._current.done()


class Scheduler:
    """Runs registered jobs on fixed intervals.

    Each run is an asyncio task owned by the scheduler. A tick that fires while
    the previous run of the same job is still going is skipped. ``stop()``
    cancels the interval loops and waits for in-flight runs to finish.
    """

    def __init__(self) -> None:
        self._jobs: dict[str, Job] = {}
        self._loops: list[asyncio.Task] = []
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def register(
        self,
        name: str,
        interval_seconds: float,
        handler: JobHandler,
        run_immediately: bool = False,
    ) -> Job:
        """Register a job. Starts its loop right away if the scheduler is running."""
        if name in self._jobs:
            raise ValueError(f"Job '{name}' already registered")
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        job = Job(name, interval_seconds, handler, run_immediately)
        self._jobs[name] = job
        if self._running:
            self._start_loop(job)
        logger.debug(f"SCHEDULER: registered {name} every {interval_seconds:.0f}s")
        return job

    def get(self, name: str) -> Job | None:
        return self._jobs.get(name)

    async def start(self) -> None:
        """Start loops for all registered jobs. Non-blocking."""
        if self._running:
            logger.warning("SCHEDULER: already running")
            return
        self._running = True
        for job in self._jobs.values():
            self._start_loop(job)
        logger.info(f"SCHEDULER: started jobs={list(self._jobs)}")

    async def stop(self) -> None:
        """Cancel loops, then wait for in-flight runs."""
        if not self._running:
            return
        self._running = False

        for loop in self._loops:
            loop.cancel()
        if self._loops:
            await asyncio.gather(*self._loops, return_exceptions=True)
        self._loops.clear()

        in_flight = [job._current for job in self._jobs.values() if job.in_flight]
        if in_flight:
            logger.info(f"SCHEDULER: waiting for {len(in_flight)} in-flight runs")
            await asyncio.gather(*in_flight, return_exceptions=True)
        logger.info("SCHEDULER: stopped")

    async def run_now(self, name: str) -> None:
        """Run a job once, outside its interval, and wait for it.

        Errors from the handler propagate to the caller.
        """
        job = self._jobs.get(name)
        if job is None:
            raise KeyError(name)
        if job.in_flight:
            await asyncio.gather(job._current, return_exceptions=True)
        job._current = asyncio.create_task(job.handler(), name=f"scheduler:run:{name}")
        job.runs += 1
        try:
            await job._current
        except Exception:
            job.failures += 1
            raise

    def _start_loop(self, job: Job) -> None:
        loop = asyncio.create_task(self._loop(job), name=f"scheduler:loop:{job.name}")
        self._loops.append(loop)

    async def _loop(self, job: Job) -> None:
        if not job.run_immediately:
            await asyncio.sleep(job.interval_seconds)
        while self._running:
            self._spawn(job)
            await asyncio.sleep(job.interval_seconds)

    def _spawn(self, job: Job) -> None:
        if job.in_flight:
            logger.warning(f"SCHEDULER: {job.name} still running, skipping tick")
            return
        job.runs += 1
        job._current = asyncio.create_task(self._guarded(job), name=f"scheduler:run:{job.name}")

    async def _guarded(self, job: Job) -> None:
        try:
            await job.handler()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            job.failures += 1
            logger.error(f"SCHEDULER: job {job.name} failed: {e}")
