"""
Durable Job Queue
=================

SQLite-backed job queue with priorities, delayed jobs, exponential retry
backoff, leases and stalled-job recovery.

Job lifecycle::

    waiting/delayed --claim--> active --complete--> completed
                                  |--fail (retryable, attempts left)--> delayed
                                  |--fail (terminal)--> failed
                                  '--lease expired--> waiting (stalled)

Claims run inside ``BEGIN IMMEDIATE`` transactions so several worker
processes can share one database. Delivery is at-least-once: a crashed
worker's job is handed out again after its lease expires, so handlers must
be idempotent.
"""

import json
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional

from ..config.settings import QueueSettings
from ..database.connection import DatabaseConnection
from ..recovery.retry_logic import BackoffCalculator, RetryConfig
from ..utils.exceptions import DatabaseError, ErrorCode, FeedLensError, QueueError, is_retryable_error
from ..utils.logging import get_logger_for_component

STALLED_REASON = "job stalled more than allowable limit"


class JobState(str, Enum):
    WAITING = "waiting"
    DELAYED = "delayed"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class Job:
    """One unit of queued work."""
    id: int
    queue: str
    name: str
    entry_id: Optional[str]
    data: Dict[str, Any] = field(default_factory=dict)
    priority: int = 5
    state: JobState = JobState.WAITING
    attempts_made: int = 0
    max_attempts: int = 1
    backoff_delay: float = 1.0
    available_at: float = 0.0
    lock_token: Optional[str] = None
    locked_until: Optional[float] = None
    stalled_count: int = 0
    progress: int = 0
    result: Any = None
    failed_reason: Optional[str] = None
    created_at: float = 0.0
    processed_at: Optional[float] = None
    finished_at: Optional[float] = None

    @property
    def force_reanalyze(self) -> bool:
        return bool(self.data.get("force_reanalyze", False))

    @classmethod
    def from_db_row(cls, row: Any) -> "Job":
        data = dict(row)
        data["state"] = JobState(data["state"])
        data["data"] = json.loads(data.get("data") or "{}")
        if data.get("result") is not None:
            data["result"] = json.loads(data["result"])
        return cls(**data)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "queue": self.queue,
            "name": self.name,
            "entry_id": self.entry_id,
            "state": self.state.value,
            "progress": self.progress,
            "data": self.data,
            "result": self.result,
            "attempts_made": self.attempts_made,
            "max_attempts": self.max_attempts,
            "failed_reason": self.failed_reason,
            "created_at": self.created_at,
            "processed_at": self.processed_at,
            "finished_at": self.finished_at,
        }


def _failure_reason(error: BaseException) -> str:
    if isinstance(error, FeedLensError):
        return error.message
    return str(error) or type(error).__name__


class JobQueue:
    """Named queue over the shared ``jobs`` table."""

    def __init__(
        self,
        db: DatabaseConnection,
        name: str,
        settings: Optional[QueueSettings] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.db = db
        self.name = name
        self.settings = settings or QueueSettings()
        self.clock = clock
        self.logger = get_logger_for_component("job_queue", queue=name)

    # Enqueueing

    def _insert(self, conn, name: str, data: Optional[Dict[str, Any]], entry_id: Optional[str],
                priority: Optional[int], delay: Optional[float], attempts: Optional[int]) -> int:
        now = self.clock()
        delay = self.settings.delay if delay is None else delay
        state = JobState.DELAYED if delay > 0 else JobState.WAITING
        cursor = conn.execute(
            """
            INSERT INTO jobs (queue, name, entry_id, data, priority, state, max_attempts,
                              backoff_delay, available_at, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                self.name,
                name,
                entry_id,
                json.dumps(data or {}, default=str),
                self.settings.default_priority if priority is None else priority,
                state.value,
                attempts or self.settings.attempts,
                self.settings.backoff_delay,
                now + delay,
                now,
            ),
        )
        return cursor.lastrowid

    def add(
        self,
        name: str,
        data: Optional[Dict[str, Any]] = None,
        *,
        entry_id: Optional[str] = None,
        priority: Optional[int] = None,
        delay: Optional[float] = None,
        attempts: Optional[int] = None,
    ) -> int:
        """Enqueue one job.

        Args:
            name: Job name (informational)
            data: JSON-serialisable payload
            entry_id: Entry the job works on
            priority: Lower runs first; queue default when omitted
            delay: Seconds before the job becomes available; queue default when omitted
            attempts: Attempt cap; queue default when omitted

        Returns:
            New job ID

        Raises:
            QueueError: If the job cannot be stored
        """
        try:
            with self.db.transaction() as conn:
                job_id = self._insert(conn, name, data, entry_id, priority, delay, attempts)
            self.logger.debug(f"Added job {job_id} ({name}) for entry {entry_id}")
            return job_id

        except Exception as e:
            raise QueueError(
                f"Failed to enqueue job: {e}",
                queue_name=self.name,
                error_code=ErrorCode.QUEUE_ENQUEUE_FAILED,
            ) from e

    def add_bulk(self, jobs: Iterable[Dict[str, Any]]) -> List[int]:
        """Enqueue many jobs in one transaction.

        Each item takes the keyword arguments of ``add`` (``name`` required).
        """
        try:
            with self.db.transaction() as conn:
                ids = [
                    self._insert(
                        conn,
                        job["name"],
                        job.get("data"),
                        job.get("entry_id"),
                        job.get("priority"),
                        job.get("delay"),
                        job.get("attempts"),
                    )
                    for job in jobs
                ]
            self.logger.info(f"Added {len(ids)} jobs")
            return ids

        except Exception as e:
            raise QueueError(
                f"Failed to enqueue batch: {e}",
                queue_name=self.name,
                error_code=ErrorCode.QUEUE_ENQUEUE_FAILED,
            ) from e

    def add_unique(
        self,
        name: str,
        entry_id: str,
        data: Optional[Dict[str, Any]] = None,
        *,
        priority: Optional[int] = None,
        delay: Optional[float] = None,
        include_completed: bool = True,
    ) -> Optional[int]:
        """Enqueue a job unless the entry already has one pending (or completed).

        The check and the insert share one write transaction.

        Returns:
            New job ID, or None when an existing job made this one redundant
        """
        blocking = [JobState.WAITING.value, JobState.DELAYED.value, JobState.ACTIVE.value]
        if include_completed:
            blocking.append(JobState.COMPLETED.value)
        placeholders = ", ".join("?" for _ in blocking)

        try:
            with self.db.transaction() as conn:
                existing = conn.execute(
                    f"""
                    SELECT id FROM jobs
                    WHERE queue = ? AND entry_id = ? AND state IN ({placeholders})
                    LIMIT 1
                    """,
                    (self.name, entry_id, *blocking),
                ).fetchone()
                if existing is not None:
                    self.logger.debug(
                        f"Entry {entry_id} already has job {existing['id']}, not enqueuing"
                    )
                    return None
                return self._insert(conn, name, data, entry_id, priority, delay, None)

        except Exception as e:
            raise QueueError(
                f"Failed to enqueue job for entry {entry_id}: {e}",
                queue_name=self.name,
                error_code=ErrorCode.QUEUE_ENQUEUE_FAILED,
            ) from e

    # Processing

    def claim(self, lock_duration: Optional[float] = None) -> Optional[Job]:
        """Atomically take the next available job and lease it.

        Due delayed jobs are promoted first. Jobs are served by priority (lower
        first), then creation time.

        Returns:
            The active job, or None if the queue is empty or paused
        """
        now = self.clock()
        lease = lock_duration or self.settings.lock_duration
        token = uuid.uuid4().hex

        with self.db.transaction() as conn:
            paused = conn.execute(
                "SELECT paused FROM queues WHERE name = ?", (self.name,)
            ).fetchone()
            if paused is not None and paused["paused"]:
                return None

            conn.execute(
                """
                UPDATE jobs SET state = 'waiting'
                WHERE queue = ? AND state = 'delayed' AND available_at <= ?
                """,
                (self.name, now),
            )
            row = conn.execute(
                """
                SELECT id FROM jobs
                WHERE queue = ? AND state = 'waiting' AND available_at <= ?
                ORDER BY priority ASC, created_at ASC, id ASC
                LIMIT 1
                """,
                (self.name, now),
            ).fetchone()
            if row is None:
                return None

            conn.execute(
                """
                UPDATE jobs
                SET state = 'active', lock_token = ?, locked_until = ?, processed_at = ?
                WHERE id = ?
                """,
                (token, now + lease, now, row["id"]),
            )
            job_row = conn.execute("SELECT * FROM jobs WHERE id = ?", (row["id"],)).fetchone()

        return Job.from_db_row(job_row)

    def _update_locked(self, job: Job, assignments: str, params: tuple) -> bool:
        """Apply an update only while ``job`` still holds its lease."""
        with self.db.get_connection() as conn:
            cursor = conn.execute(
                f"UPDATE jobs SET {assignments} WHERE id = ? AND lock_token = ? AND state = 'active'",
                (*params, job.id, job.lock_token),
            )
            conn.commit()
            return cursor.rowcount > 0

    def extend_lock(self, job: Job, duration: Optional[float] = None) -> bool:
        """Renew the lease. False means the job was taken away (stalled)."""
        until = self.clock() + (duration or self.settings.lock_duration)
        if self._update_locked(job, "locked_until = ?", (until,)):
            job.locked_until = until
            return True
        return False

    def update_progress(self, job: Job, progress: int) -> bool:
        progress = max(0, min(100, int(progress)))
        if self._update_locked(job, "progress = ?", (progress,)):
            job.progress = progress
            return True
        return False

    def complete(self, job: Job, result: Any = None) -> bool:
        """Mark an active job completed and prune old completed jobs."""
        now = self.clock()
        done = self._update_locked(
            job,
            """state = 'completed', result = ?, progress = 100, finished_at = ?,
               attempts_made = attempts_made + 1, lock_token = NULL, locked_until = NULL""",
            (json.dumps(result, default=str), now),
        )
        if not done:
            self.logger.warning(f"Job {job.id} lost its lock before completion")
            return False

        job.state = JobState.COMPLETED
        job.result = result
        job.finished_at = now
        self.prune()
        return True

    def fail(self, job: Job, error: BaseException) -> Optional[JobState]:
        """Record a failed attempt.

        Retryable errors with attempts left put the job back as ``delayed``
        after an exponential backoff; everything else fails it for good. The
        failure reason is kept either way.

        Returns:
            The job's new state, or None if the job no longer held its lock
        """
        now = self.clock()
        attempts = job.attempts_made + 1
        reason = _failure_reason(error)
        retry = RetryConfig(
            max_attempts=job.max_attempts,
            base_delay=job.backoff_delay,
        )

        if is_retryable_error(error) and retry.can_retry(attempts):
            delay = BackoffCalculator(retry).calculate_delay(attempts)
            new_state = JobState.DELAYED
            updated = self._update_locked(
                job,
                """state = 'delayed', attempts_made = ?, failed_reason = ?, available_at = ?,
                   lock_token = NULL, locked_until = NULL""",
                (attempts, reason, now + delay),
            )
            if updated:
                self.logger.warning(
                    f"Job {job.id} attempt {attempts}/{job.max_attempts} failed, "
                    f"retrying in {delay:.1f}s: {reason}"
                )
        else:
            new_state = JobState.FAILED
            updated = self._update_locked(
                job,
                """state = 'failed', attempts_made = ?, failed_reason = ?, finished_at = ?,
                   lock_token = NULL, locked_until = NULL""",
                (attempts, reason, now),
            )
            if updated:
                self.logger.error(f"Job {job.id} failed after {attempts} attempt(s): {reason}")

        if not updated:
            self.logger.warning(f"Job {job.id} lost its lock before failure was recorded")
            return None

        job.state = new_state
        job.attempts_made = attempts
        job.failed_reason = reason
        if new_state is JobState.FAILED:
            job.finished_at = now
            self.prune()
        return new_state

    def recover_stalled(self) -> int:
        """Requeue active jobs whose lease expired.

        A job stalled more than ``max_stalled_count`` times is failed instead.

        Returns:
            Number of stalled jobs found
        """
        now = self.clock()
        with self.db.transaction() as conn:
            rows = conn.execute(
                """
                SELECT id, stalled_count FROM jobs
                WHERE queue = ? AND state = 'active' AND locked_until < ?
                """,
                (self.name, now),
            ).fetchall()

            for row in rows:
                stalled = row["stalled_count"] + 1
                if stalled > self.settings.max_stalled_count:
                    conn.execute(
                        """
                        UPDATE jobs SET state = 'failed', stalled_count = ?, failed_reason = ?,
                                        finished_at = ?, lock_token = NULL, locked_until = NULL
                        WHERE id = ?
                        """,
                        (stalled, STALLED_REASON, now, row["id"]),
                    )
                    self.logger.error(f"Job {row['id']} {STALLED_REASON}")
                else:
                    conn.execute(
                        """
                        UPDATE jobs SET state = 'waiting', stalled_count = ?, available_at = ?,
                                        lock_token = NULL, locked_until = NULL
                        WHERE id = ?
                        """,
                        (stalled, now, row["id"]),
                    )
                    self.logger.warning(f"Job {row['id']} stalled, moved back to waiting")

        return len(rows)

    # Introspection

    def get_job(self, job_id: int) -> Optional[Job]:
        row = self.db.execute_one(
            "SELECT * FROM jobs WHERE id = ? AND queue = ?", (job_id, self.name)
        )
        return Job.from_db_row(row) if row else None

    def get_job_state(self, job_id: int) -> Optional[JobState]:
        job = self.get_job(job_id)
        return job.state if job else None

    def get_jobs(self, state: JobState, limit: int = 50) -> List[Job]:
        rows = self.db.execute_query(
            "SELECT * FROM jobs WHERE queue = ? AND state = ? ORDER BY id DESC LIMIT ?",
            (self.name, JobState(state).value, limit),
        )
        return [Job.from_db_row(row) for row in rows]

    def get_counts(self) -> Dict[str, int]:
        counts = {state.value: 0 for state in JobState}
        try:
            rows = self.db.execute_query(
                "SELECT state, COUNT(*) AS n FROM jobs WHERE queue = ? GROUP BY state",
                (self.name,),
            )
        except Exception as e:
            raise DatabaseError(
                f"Failed to count jobs: {e}", error_code=ErrorCode.DATABASE_ERROR
            ) from e

        for row in rows:
            counts[row["state"]] = row["n"]
        return counts

    def get_stats(self) -> Dict[str, Any]:
        """Job counts plus processed total and success rate (percent)."""
        counts = self.get_counts()
        processed = counts["completed"] + counts["failed"]
        success_rate = round(counts["completed"] / processed * 100, 2) if processed else 0
        return {
            "queue": self.name,
            **counts,
            "total_processed": processed,
            "success_rate": success_rate,
            "paused": self.is_paused(),
        }

    # Administration

    def retry_failed(self, limit: int = 100) -> int:
        """Move up to ``limit`` failed jobs back to waiting with a fresh attempt budget."""
        now = self.clock()
        with self.db.transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE jobs
                SET state = 'waiting', attempts_made = 0, stalled_count = 0,
                    available_at = ?, finished_at = NULL
                WHERE id IN (
                    SELECT id FROM jobs WHERE queue = ? AND state = 'failed'
                    ORDER BY finished_at DESC, id DESC LIMIT ?
                )
                """,
                (now, self.name, limit),
            )
            retried = cursor.rowcount

        self.logger.info(f"Retried {retried} failed jobs")
        return retried

    def _set_paused(self, paused: bool) -> None:
        self.db.execute_update(
            """
            INSERT INTO queues (name, paused) VALUES (?, ?)
            ON CONFLICT(name) DO UPDATE SET paused = excluded.paused
            """,
            (self.name, paused),
        )

    def pause(self) -> None:
        """Stop handing out jobs. Active jobs finish normally."""
        self._set_paused(True)
        self.logger.info("Queue paused")

    def resume(self) -> None:
        self._set_paused(False)
        self.logger.info("Queue resumed")

    def is_paused(self) -> bool:
        row = self.db.execute_one("SELECT paused FROM queues WHERE name = ?", (self.name,))
        return bool(row["paused"]) if row else False

    def drain(self) -> int:
        """Delete all waiting and delayed jobs; active and finished jobs stay."""
        removed = self.db.execute_update(
            "DELETE FROM jobs WHERE queue = ? AND state IN ('waiting', 'delayed')",
            (self.name,),
        )
        self.logger.info(f"Drained {removed} jobs")
        return removed

    def prune(self) -> int:
        """Apply the retention policy to completed and failed jobs."""
        now = self.clock()
        s = self.settings
        with self.db.transaction() as conn:
            removed = conn.execute(
                "DELETE FROM jobs WHERE queue = ? AND state = 'completed' AND finished_at < ?",
                (self.name, now - s.remove_on_complete_age),
            ).rowcount
            removed += conn.execute(
                """
                DELETE FROM jobs
                WHERE queue = ? AND state = 'completed' AND id NOT IN (
                    SELECT id FROM jobs WHERE queue = ? AND state = 'completed'
                    ORDER BY finished_at DESC, id DESC LIMIT ?
                )
                """,
                (self.name, self.name, s.remove_on_complete_count),
            ).rowcount
            removed += conn.execute(
                "DELETE FROM jobs WHERE queue = ? AND state = 'failed' AND finished_at < ?",
                (self.name, now - s.remove_on_fail_age),
            ).rowcount

        if removed:
            self.logger.debug(f"Pruned {removed} finished jobs")
        return removed
