"""
Deep Analysis Stage
===================

Runs the article analysis workflow for entries that passed screening,
stores the results and the entry embedding, then applies the owner's rules.
"""

import asyncio
from typing import Any, Dict, Optional

from ..ai.analyzer import ContentAnalyzer, DeepAnalysis
from ..ai.language import AnalysisStage, ModelSelector, detect_language
from ..config.settings import AnalysisSettings
from ..database.models import Entry, utc_now
from ..queue.job_queue import Job, JobQueue
from ..queue.worker import Worker
from ..rules.engine import RuleEngine
from ..storage.entry_repository import EntryRepository
from ..utils.exceptions import (
    AnalysisError,
    ContentValidationError,
    ErrorCode,
    FeedLensError,
    ResourceNotFoundError,
    ValidationError,
)
from ..utils.logging import get_logger_for_component
from ..vector.base import VectorStore
from ..workflow.analysis_workflow import ENTRY_NODE, AnalysisContext
from ..workflow.orchestrator import WorkflowOrchestrator

DEEP_QUEUE = "deep-analysis"
DEEP_JOB = "deep"


def analysis_fields(analysis: DeepAnalysis, processing_time_ms: int) -> Dict[str, Any]:
    """Map a workflow result onto the ``ai_*`` entry columns."""
    return {
        "ai_one_line_summary": analysis.one_line_summary,
        "ai_summary": analysis.summary,
        "ai_main_points": analysis.main_points,
        "ai_key_quotes": analysis.key_quotes,
        "ai_domain": analysis.domain,
        "ai_subcategory": analysis.subcategory,
        "ai_tags": analysis.tags,
        "ai_score": analysis.ai_score,
        "ai_score_dimensions": analysis.score_dimensions.as_dict(),
        "ai_analysis_model": analysis.model,
        "ai_processing_time_ms": processing_time_ms,
        "ai_reflection_rounds": analysis.reflection_rounds,
        "ai_analyzed_at": utc_now(),
    }


class DeepAnalysisProcessor:
    """Job handler and enqueue API for the deep analysis queue."""

    def __init__(
        self,
        queue: JobQueue,
        entries: EntryRepository,
        analyzer: ContentAnalyzer,
        workflow: WorkflowOrchestrator,
        settings: AnalysisSettings,
        vector_store: Optional[VectorStore] = None,
        rule_engine: Optional[RuleEngine] = None,
        selector: Optional[ModelSelector] = None,
    ):
        self.queue = queue
        self.entries = entries
        self.analyzer = analyzer
        self.workflow = workflow
        self.settings = settings
        self.vector_store = vector_store
        self.rule_engine = rule_engine
        self.selector = selector or ModelSelector(settings)
        self.logger = get_logger_for_component("deep_analysis", queue=queue.name)

    def add_job(self, entry_id: str, priority: Optional[int] = None,
                force_reanalyze: bool = False) -> Optional[int]:
        """Queue deep analysis unless the entry already has a deep job.

        A forced re-analysis only skips when a job is still pending.

        Returns:
            New job ID, or None if an existing job covers the entry
        """
        return self.queue.add_unique(
            DEEP_JOB,
            entry_id,
            {"entry_id": entry_id, "force_reanalyze": force_reanalyze},
            priority=priority,
            include_completed=not force_reanalyze,
        )

    def create_worker(self, concurrency: Optional[int] = None) -> Worker:
        return Worker(self.queue, self.process, concurrency)

    async def _run_workflow(self, context: AnalysisContext, entry: Entry):
        timeout = self.settings.timeout * (2 + context.reflection_rounds)
        try:
            return await asyncio.wait_for(
                self.workflow.execute(
                    ENTRY_NODE,
                    {"entry_id": entry.id, "title": entry.title, "content": entry.text_for_analysis},
                    context,
                ),
                timeout=timeout,
            )
        except asyncio.TimeoutError as e:
            raise AnalysisError(
                f"Deep analysis timed out after {timeout}s",
                error_code=ErrorCode.ANALYZER_TIMEOUT,
                model=context.analysis_model,
                stage=AnalysisStage.ANALYSIS.value,
            ) from e

    async def process(self, job: Job) -> Dict[str, Any]:
        """Analyze one entry in depth.

        Raises:
            ResourceNotFoundError: Entry does not exist (not retried)
            ContentValidationError: Entry has no text (not retried)
            AnalysisError: Workflow failure or timeout (retried)
            DimensionMismatchError: Embedding does not fit the vector store (not retried)
        """
        entry_id = job.entry_id or job.data.get("entry_id")
        log = self.logger.bind(job_id=job.id, entry_id=entry_id)
        self.queue.update_progress(job, 10)

        entry = self.entries.get_entry(entry_id)
        if entry is None:
            raise ResourceNotFoundError(f"Entry {entry_id} not found", resource_id=entry_id)
        if not entry.text_for_analysis.strip():
            raise ContentValidationError("no content", entry_id=entry_id)

        if entry.ai_analyzed_at is not None and not job.force_reanalyze:
            log.info(f"Entry {entry_id} already analyzed, skipping")
            return {"entry_id": entry_id, "skipped": True}

        language = entry.prelim_language or detect_language(entry.text_for_analysis).language
        context = AnalysisContext(
            entry_id=entry_id,
            title=entry.title,
            language=language,
            analyzer=self.analyzer,
            analysis_model=self.selector.select_model(language, AnalysisStage.ANALYSIS),
            reflection_model=self.selector.select_model(language, AnalysisStage.REFLECTION),
            reflection_rounds=self.settings.reflection_rounds,
            segment_size=self.settings.segment_size,
            segment_overlap=self.settings.segment_overlap,
        )
        self.queue.update_progress(job, 30)

        result = await self._run_workflow(context, entry)
        if not result.success:
            error = result.error
            if isinstance(error, FeedLensError) and not error.recoverable:
                raise error
            raise AnalysisError(
                f"Analysis workflow failed: {error}",
                model=context.analysis_model,
                stage=AnalysisStage.ANALYSIS.value,
            ) from error

        analysis: DeepAnalysis = result.output["analysis"]
        self.queue.update_progress(job, 70)

        self.entries.save_deep_analysis(entry_id, analysis_fields(analysis, result.execution_time_ms))
        self.queue.update_progress(job, 80)

        embedded = await self._store_embedding(entry, analysis, log)
        self.queue.update_progress(job, 90)

        matched = self._apply_rules(entry_id, log)
        self.queue.update_progress(job, 100)

        log.info(
            f"Entry {entry_id} analyzed: score {analysis.ai_score}, "
            f"{len(analysis.main_points)} points, {result.execution_time_ms}ms"
        )
        return {
            "entry_id": entry_id,
            "ai_score": analysis.ai_score,
            "model": analysis.model,
            "language": language,
            "embedded": embedded,
            "rules_matched": matched,
        }

    async def _store_embedding(self, entry: Entry, analysis: DeepAnalysis, log) -> bool:
        store = self.vector_store
        if store is None:
            return False

        text = "\n".join(part for part in (entry.title, analysis.summary, entry.text_for_analysis) if part)
        try:
            vector = await self.analyzer.embed(text, store.get_config().dimension)
            store.store(entry.id, vector, {"model": analysis.model, "domain": analysis.domain})
            return True
        except ValidationError:
            raise
        except Exception as e:
            log.error(f"Failed to store embedding for {entry.id}: {e}")
            return False

    def _apply_rules(self, entry_id: str, log) -> list:
        if self.rule_engine is None:
            return []
        try:
            return self.rule_engine.process_entry(entry_id).matched
        except ValidationError:
            raise
        except Exception as e:
            log.error(f"Rule processing failed for {entry_id}: {e}")
            return []
