"""
Tests for the deep analysis stage
=================================

Workflow results persisted onto the entry, embeddings stored, rules applied.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from feedlens.ai.heuristic_analyzer import HeuristicAnalyzer
from feedlens.config.settings import AnalysisSettings, QueueSettings
from feedlens.database.models import Rule
from feedlens.processing.deep_analysis import DEEP_QUEUE, DeepAnalysisProcessor
from feedlens.queue.job_queue import JobQueue, JobState
from feedlens.queue.worker import Worker
from feedlens.rules.engine import RuleEngine
from feedlens.vector.base import VectorStoreConfig
from feedlens.vector.memory_store import MemoryVectorStore
from feedlens.workflow.analysis_workflow import create_article_analysis_workflow

DIMENSION = 32

ARTICLE = (
    "# Scaling PostgreSQL\n\n"
    "Database sharding spreads data across nodes so each database handles less load.\n\n"
    "> Sharding is a last resort, not a first step.\n\n"
    "```\nSELECT * FROM orders WHERE tenant_id = 42;\n```\n\n"
    "Read replicas and connection pooling usually buy a database more time than sharding."
)


@pytest.fixture
def queue(db):
    return JobQueue(db, DEEP_QUEUE, QueueSettings(attempts=2, backoff_delay=0.0, delay=0.0))


@pytest.fixture
def vector_store():
    return MemoryVectorStore(VectorStoreConfig(dimension=DIMENSION))


@pytest.fixture
def analyzer():
    return HeuristicAnalyzer()


@pytest.fixture
def processor(queue, entry_repo, rule_repo, analyzer, vector_store):
    return DeepAnalysisProcessor(
        queue,
        entry_repo,
        analyzer,
        create_article_analysis_workflow(),
        AnalysisSettings(timeout=5.0, segment_size=200),
        vector_store=vector_store,
        rule_engine=RuleEngine(entry_repo, rule_repo),
    )


async def run_all(processor):
    return await Worker(processor.queue, processor.process).run_until_empty()


class TestDeepAnalysisProcessor:
    """Test suite for DeepAnalysisProcessor."""

    @pytest.mark.asyncio
    async def test_analysis_fields_saved(self, processor, make_entry, entry_repo):
        entry = make_entry(title="Scaling PostgreSQL", content=ARTICLE)
        job_id = processor.add_job(entry.id)

        await run_all(processor)

        job = processor.queue.get_job(job_id)
        assert job.state is JobState.COMPLETED, job.failed_reason
        stored = entry_repo.get_entry(entry.id)
        assert stored.ai_analyzed_at is not None
        assert 1 <= stored.ai_score <= 10
        assert stored.ai_summary
        assert stored.ai_one_line_summary
        assert stored.ai_main_points
        assert stored.ai_domain == "technology"
        assert "database" in stored.ai_tags
        assert set(stored.ai_score_dimensions) == {"depth", "quality", "practicality", "novelty"}
        assert stored.ai_analysis_model == "gemini-1.5-pro"
        assert stored.ai_reflection_rounds == 1
        assert stored.ai_processing_time_ms is not None

    @pytest.mark.asyncio
    async def test_embedding_stored(self, processor, make_entry, vector_store):
        entry = make_entry(content=ARTICLE)
        processor.add_job(entry.id)

        await run_all(processor)

        vector = vector_store.get(entry.id)
        assert vector is not None
        assert len(vector) == DIMENSION
        [hit] = vector_store.search(vector, limit=1)
        assert hit.entry_id == entry.id
        assert hit.metadata["domain"] == "technology"

    @pytest.mark.asyncio
    async def test_rules_applied_after_analysis(self, processor, make_entry, entry_repo, rule_repo):
        rule_repo.create_rule(Rule(
            user_id="alice",
            name="star postgres",
            conditions=[{"field": "title", "operator": "contains", "value": "postgres"}],
            actions=[{"type": "star"}],
        ))
        entry = make_entry(title="Scaling PostgreSQL", content=ARTICLE)
        job_id = processor.add_job(entry.id)

        await run_all(processor)

        assert entry_repo.get_entry(entry.id).is_starred is True
        assert processor.queue.get_job(job_id).result["rules_matched"] == ["star postgres"]

    @pytest.mark.asyncio
    async def test_summary_used_when_content_missing(self, processor, make_entry, entry_repo):
        entry = make_entry(content=None, summary="A short excerpt about databases.")
        processor.add_job(entry.id)

        await run_all(processor)

        assert entry_repo.get_entry(entry.id).ai_analyzed_at is not None

    @pytest.mark.asyncio
    async def test_no_text_fails_permanently(self, processor, make_entry):
        entry = make_entry(content=None, summary=None)
        job_id = processor.add_job(entry.id)

        await run_all(processor)

        job = processor.queue.get_job(job_id)
        assert job.state is JobState.FAILED
        assert job.attempts_made == 1

    @pytest.mark.asyncio
    async def test_already_analyzed_entry_skipped(self, processor, analyzer, make_entry):
        entry = make_entry(content=ARTICLE)
        processor.add_job(entry.id)
        await run_all(processor)

        analyzer.analyze = AsyncMock()
        job_id = processor.queue.add("deep", {"entry_id": entry.id}, entry_id=entry.id)
        await run_all(processor)

        assert processor.queue.get_job(job_id).result == {"entry_id": entry.id, "skipped": True}
        analyzer.analyze.assert_not_called()

    @pytest.mark.asyncio
    async def test_add_job_dedupes(self, processor, make_entry):
        entry = make_entry(content=ARTICLE)

        assert processor.add_job(entry.id) is not None
        assert processor.add_job(entry.id) is None
        await run_all(processor)

        assert processor.add_job(entry.id) is None
        assert processor.add_job(entry.id, force_reanalyze=True) is not None

    @pytest.mark.asyncio
    async def test_dimension_mismatch_is_terminal(self, processor, analyzer, make_entry, vector_store):
        analyzer.embed = AsyncMock(return_value=[0.1] * (DIMENSION + 1))
        entry = make_entry(content=ARTICLE)
        job_id = processor.add_job(entry.id)

        await run_all(processor)

        job = processor.queue.get_job(job_id)
        assert job.state is JobState.FAILED
        assert "dimension mismatch" in job.failed_reason
        assert vector_store.size() == 0

    @pytest.mark.asyncio
    async def test_embedding_provider_failure_only_logged(self, processor, analyzer, make_entry):
        analyzer.embed = AsyncMock(side_effect=RuntimeError("embedding service down"))
        entry = make_entry(content=ARTICLE)
        job_id = processor.add_job(entry.id)

        await run_all(processor)

        job = processor.queue.get_job(job_id)
        assert job.state is JobState.COMPLETED
        assert job.result["embedded"] is False

    @pytest.mark.asyncio
    async def test_rule_failure_only_logged(self, processor, make_entry):
        processor.rule_engine = MagicMock()
        processor.rule_engine.process_entry.side_effect = RuntimeError("rules table locked")
        entry = make_entry(content=ARTICLE)
        job_id = processor.add_job(entry.id)

        await run_all(processor)

        job = processor.queue.get_job(job_id)
        assert job.state is JobState.COMPLETED
        assert job.result["rules_matched"] == []

    @pytest.mark.asyncio
    async def test_analyzer_failure_retried_then_failed(self, processor, analyzer, make_entry, entry_repo):
        analyzer.analyze = AsyncMock(side_effect=RuntimeError("provider outage"))
        entry = make_entry(content=ARTICLE)
        job_id = processor.add_job(entry.id)

        await run_all(processor)

        job = processor.queue.get_job(job_id)
        assert job.state is JobState.FAILED
        assert job.attempts_made == 2
        assert "provider outage" in job.failed_reason
        assert entry_repo.get_entry(entry.id).ai_analyzed_at is None

    @pytest.mark.asyncio
    async def test_without_optional_collaborators(self, queue, entry_repo, analyzer, make_entry):
        processor = DeepAnalysisProcessor(
            queue, entry_repo, analyzer, create_article_analysis_workflow(), AnalysisSettings()
        )
        entry = make_entry(content=ARTICLE)
        job_id = processor.add_job(entry.id)

        await run_all(processor)

        result = processor.queue.get_job(job_id).result
        assert result["embedded"] is False
        assert result["rules_matched"] == []
