"""
Tests for the queue Worker.
"""

import asyncio

import pytest

from feedlens.config.settings import QueueSettings
from feedlens.queue.job_queue import JobQueue, JobState
from feedlens.queue.worker import Worker
from feedlens.utils.exceptions import ContentValidationError


@pytest.fixture
def queue(db):
    settings = QueueSettings(
        attempts=2, backoff_delay=0.0, delay=0.0, concurrency=3,
        poll_interval=0.01, lock_duration=5.0,
    )
    return JobQueue(db, "worker-test", settings)


class TestWorker:
    """Test suite for Worker."""

    @pytest.mark.asyncio
    async def test_process_next_completes_job(self, queue):
        job_id = queue.add("job", {"n": 1})

        async def handler(job):
            queue.update_progress(job, 50)
            return {"doubled": job.data["n"] * 2}

        worker = Worker(queue, handler)
        job = await worker.process_next()

        assert job.id == job_id
        stored = queue.get_job(job_id)
        assert stored.state is JobState.COMPLETED
        assert stored.result == {"doubled": 2}
        assert worker.processed == 1

    @pytest.mark.asyncio
    async def test_process_next_when_empty(self, queue):
        worker = Worker(queue, lambda job: None)
        assert await worker.process_next() is None

    @pytest.mark.asyncio
    async def test_handler_failure_fails_only_that_job(self, queue):
        bad = queue.add("job", {"ok": False})
        good = queue.add("job", {"ok": True})

        async def handler(job):
            if not job.data["ok"]:
                raise ContentValidationError("no content")
            return "fine"

        worker = Worker(queue, handler)
        assert await worker.run_until_empty() == 2

        assert queue.get_job(bad).state is JobState.FAILED
        assert queue.get_job(bad).failed_reason == "no content"
        assert queue.get_job(good).state is JobState.COMPLETED
        assert worker.failed == 1
        assert worker.processed == 1

    @pytest.mark.asyncio
    async def test_transient_failure_is_retried(self, queue):
        job_id = queue.add("job")
        calls = []

        async def handler(job):
            calls.append(job.attempts_made)
            if len(calls) == 1:
                raise RuntimeError("flaky")
            return "ok"

        worker = Worker(queue, handler)
        await worker.run_until_empty()

        assert calls == [0, 1]
        assert queue.get_job(job_id).state is JobState.COMPLETED

    @pytest.mark.asyncio
    async def test_run_until_empty_respects_max_jobs(self, queue):
        for _ in range(3):
            queue.add("job")

        async def handler(job):
            return None

        worker = Worker(queue, handler)
        assert await worker.run_until_empty(max_jobs=2) == 2
        assert queue.get_counts()["waiting"] == 1

    @pytest.mark.asyncio
    async def test_start_and_close_runs_jobs_concurrently(self, queue):
        for _ in range(3):
            queue.add("job")
        in_flight = []
        peak = []
        release = asyncio.Event()

        async def handler(job):
            in_flight.append(job.id)
            peak.append(len(in_flight))
            await release.wait()
            in_flight.remove(job.id)
            return job.id

        worker = Worker(queue, handler)
        worker.start()
        assert worker.is_running

        for _ in range(100):
            if len(in_flight) == 3:
                break
            await asyncio.sleep(0.01)

        assert max(peak) == 3
        release.set()
        await worker.close()

        assert not worker.is_running
        assert queue.get_counts()["completed"] == 3
        assert worker.processed == 3

    @pytest.mark.asyncio
    async def test_close_waits_for_running_job(self, queue):
        queue.add("job")
        started = asyncio.Event()

        async def handler(job):
            started.set()
            await asyncio.sleep(0.05)
            return "done"

        worker = Worker(queue, handler, concurrency=1)
        worker.start()
        await asyncio.wait_for(started.wait(), timeout=2)
        await worker.close()

        assert queue.get_counts()["completed"] == 1

    @pytest.mark.asyncio
    async def test_bookkeeping_failure_does_not_crash(self, queue, monkeypatch):
        queue.add("job")

        def broken_complete(job, result=None):
            raise RuntimeError("database is locked")

        monkeypatch.setattr(queue, "complete", broken_complete)

        async def handler(job):
            return "ok"

        worker = Worker(queue, handler)
        job = await worker.process_next()

        assert job is not None
        assert worker.processed == 0
