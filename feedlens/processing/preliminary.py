"""
Preliminary Analysis Stage
==========================

First, cheap pass over every new entry: decide whether it is worth deep
analysis. Passed entries are handed to the deep analysis queue.
"""

from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional

from ..ai.evaluator import PreliminaryEvaluator
from ..queue.job_queue import Job, JobQueue
from ..queue.worker import Worker
from ..storage.entry_repository import EntryRepository
from ..utils.exceptions import ContentValidationError, ResourceNotFoundError
from ..utils.logging import PerformanceLogger, get_logger_for_component

if TYPE_CHECKING:
    from .deep_analysis import DeepAnalysisProcessor

PRELIMINARY_QUEUE = "preliminary-analysis"
PRELIMINARY_JOB = "preliminary"


class PreliminaryProcessor:
    """Job handler and enqueue API for the preliminary queue."""

    def __init__(
        self,
        queue: JobQueue,
        entries: EntryRepository,
        evaluator: PreliminaryEvaluator,
        deep: Optional["DeepAnalysisProcessor"] = None,
    ):
        self.queue = queue
        self.entries = entries
        self.evaluator = evaluator
        self.deep = deep
        self.logger = get_logger_for_component("preliminary", queue=queue.name)

    # Enqueue API

    def add_job(self, entry_id: str, priority: Optional[int] = None,
                force_reanalyze: bool = False, delay: Optional[float] = None) -> int:
        """Queue preliminary analysis for one entry."""
        return self.queue.add(
            PRELIMINARY_JOB,
            {"entry_id": entry_id, "force_reanalyze": force_reanalyze},
            entry_id=entry_id,
            priority=priority,
            delay=delay,
        )

    def add_jobs_batch(self, entry_ids: Iterable[str], priority: Optional[int] = None,
                       force_reanalyze: bool = False) -> List[int]:
        return self.queue.add_bulk(
            {
                "name": PRELIMINARY_JOB,
                "data": {"entry_id": entry_id, "force_reanalyze": force_reanalyze},
                "entry_id": entry_id,
                "priority": priority,
            }
            for entry_id in entry_ids
        )

    def add_unanalyzed_entries(self, limit: int = 100, priority: Optional[int] = None) -> int:
        """Queue entries that have content but no preliminary result yet."""
        entry_ids = self.entries.get_unanalyzed_entry_ids(limit)
        if not entry_ids:
            return 0
        self.add_jobs_batch(entry_ids, priority=priority)
        self.logger.info(f"Queued {len(entry_ids)} unanalyzed entries")
        return len(entry_ids)

    def create_worker(self, concurrency: Optional[int] = None) -> Worker:
        return Worker(self.queue, self.process, concurrency)

    # Job handler

    async def process(self, job: Job) -> Dict[str, Any]:
        """Evaluate one entry.

        Raises:
            ResourceNotFoundError: Entry does not exist (not retried)
            ContentValidationError: Entry has no content (not retried)
            AnalysisError: Analyzer failure or timeout (retried)
        """
        entry_id = job.entry_id or job.data.get("entry_id")
        log = self.logger.bind(job_id=job.id, entry_id=entry_id)
        self.queue.update_progress(job, 10)

        entry = self.entries.get_entry(entry_id)
        if entry is None:
            raise ResourceNotFoundError(f"Entry {entry_id} not found", resource_id=entry_id)
        if not (entry.content or "").strip():
            raise ContentValidationError("no content", entry_id=entry_id)

        if entry.prelim_status is not None and not job.force_reanalyze:
            log.info(f"Entry {entry_id} already screened ({entry.prelim_status.value}), skipping")
            return {"entry_id": entry_id, "skipped": True, "status": entry.prelim_status.value}

        self.queue.update_progress(job, 30)
        with PerformanceLogger(log, f"preliminary analysis of {entry_id}"):
            evaluation, model = await self.evaluator.evaluate(entry.title, entry.content)
        self.queue.update_progress(job, 70)

        self.entries.save_preliminary_result(
            entry_id,
            ignore=evaluation.ignore,
            reason=evaluation.reason,
            value=evaluation.value,
            summary=evaluation.summary,
            language=evaluation.language,
            model=model,
        )
        self.queue.update_progress(job, 90)

        deep_job_id = None
        if not evaluation.ignore and self.deep is not None:
            try:
                deep_job_id = self.deep.add_job(
                    entry_id, priority=job.priority, force_reanalyze=job.force_reanalyze
                )
            except Exception as e:
                log.error(f"Failed to queue deep analysis for {entry_id}: {e}")

        self.queue.update_progress(job, 100)
        status = "rejected" if evaluation.ignore else "passed"
        log.info(f"Entry {entry_id} {status} (value {evaluation.value}, {evaluation.language})")

        return {
            "entry_id": entry_id,
            "status": status,
            "value": evaluation.value,
            "language": evaluation.language,
            "model": model,
            "confidence": evaluation.confidence,
            "deep_job_id": deep_job_id,
        }
