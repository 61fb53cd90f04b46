"""
Queue Worker
============

asyncio worker that pulls jobs from a ``JobQueue`` and runs an async handler
with bounded concurrency. Each running job gets a heartbeat that renews its
lease; a periodic stalled-job check requeues jobs whose worker died.

A handler failure only fails that job; the worker loop keeps running.
"""

import asyncio
import contextlib
import time
from typing import Any, Awaitable, Callable, Optional, Set

from .job_queue import Job, JobQueue, JobState
from ..utils.logging import get_logger_for_component

JobHandler = Callable[[Job], Awaitable[Any]]


class Worker:
    """Processes jobs from one queue."""

    def __init__(self, queue: JobQueue, handler: JobHandler, concurrency: Optional[int] = None):
        self.queue = queue
        self.handler = handler
        self.settings = queue.settings
        self.concurrency = concurrency or self.settings.concurrency
        self.logger = get_logger_for_component("worker", queue=queue.name)

        self._running: Set[asyncio.Task] = set()
        self._closing: Optional[asyncio.Event] = None
        self._loop_task: Optional[asyncio.Task] = None
        self._last_stalled_check = 0.0

        self.processed = 0
        self.failed = 0

    @property
    def is_running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    async def _heartbeat(self, job: Job) -> None:
        interval = self.settings.lock_duration / 2
        while True:
            await asyncio.sleep(interval)
            if not self.queue.extend_lock(job):
                self.logger.warning(f"Job {job.id} lost its lock while running")
                return

    async def run_job(self, job: Job) -> JobState:
        """Run the handler for a claimed job and record the outcome."""
        log = self.logger.bind(job_id=job.id, entry_id=job.entry_id)
        heartbeat = asyncio.create_task(self._heartbeat(job))
        try:
            try:
                result = await self.handler(job)
            except Exception as e:
                self.failed += 1
                log.warning(f"Job {job.id} handler failed: {e}")
                return self.queue.fail(job, e) or job.state

            self.queue.complete(job, result)
            self.processed += 1
            return job.state

        except Exception as e:
            # handler already finished; only the queue bookkeeping failed
            log.error(f"Could not record outcome of job {job.id}: {e}")
            return job.state

        finally:
            heartbeat.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await heartbeat

    async def process_next(self) -> Optional[Job]:
        """Claim and run a single job inline. Returns the job, or None if idle."""
        job = self.queue.claim()
        if job is None:
            return None
        await self.run_job(job)
        return job

    async def run_until_empty(self, max_jobs: Optional[int] = None) -> int:
        """Process available jobs one by one until none is left."""
        count = 0
        while max_jobs is None or count < max_jobs:
            if await self.process_next() is None:
                break
            count += 1
        return count

    def _check_stalled(self) -> None:
        now = time.monotonic()
        if now - self._last_stalled_check < self.settings.stalled_interval:
            return
        self._last_stalled_check = now
        try:
            recovered = self.queue.recover_stalled()
            if recovered:
                self.logger.info(f"Recovered {recovered} stalled jobs")
        except Exception as e:
            self.logger.error(f"Stalled job check failed: {e}")

    async def _idle(self) -> None:
        try:
            await asyncio.wait_for(self._closing.wait(), timeout=self.settings.poll_interval)
        except asyncio.TimeoutError:
            pass

    async def _run_loop(self) -> None:
        self.logger.info(f"Worker started (concurrency {self.concurrency})")
        while not self._closing.is_set():
            self._check_stalled()

            if len(self._running) >= self.concurrency:
                await asyncio.wait(self._running, return_when=asyncio.FIRST_COMPLETED)
                continue

            try:
                job = self.queue.claim()
            except Exception as e:
                self.logger.error(f"Failed to claim job: {e}")
                job = None

            if job is None:
                await self._idle()
                continue

            task = asyncio.create_task(self.run_job(job))
            self._running.add(task)
            task.add_done_callback(self._running.discard)

        self.logger.info("Worker loop stopped")

    def start(self) -> asyncio.Task:
        """Start the polling loop on the running event loop."""
        if self.is_running:
            return self._loop_task
        self._closing = asyncio.Event()
        self._loop_task = asyncio.create_task(self._run_loop())
        return self._loop_task

    async def close(self) -> None:
        """Stop claiming jobs and wait for running ones to finish."""
        if self._closing is not None:
            self._closing.set()
        if self._loop_task is not None:
            await self._loop_task
            self._loop_task = None
        if self._running:
            self.logger.info(f"Waiting for {len(self._running)} running jobs")
            await asyncio.gather(*self._running, return_exceptions=True)
        self.logger.info(f"Worker closed ({self.processed} completed, {self.failed} failed)")
