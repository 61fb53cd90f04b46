"""
Tests for the article analysis workflow
=======================================

Content segmentation and the segment -> analyze -> reflect -> score chain.
"""

from unittest.mock import AsyncMock

import pytest

from feedlens.ai.analyzer import DeepAnalysis, ScoreDimensions
from feedlens.ai.heuristic_analyzer import HeuristicAnalyzer
from feedlens.utils.exceptions import ContentValidationError
from feedlens.workflow.analysis_workflow import (
    ENTRY_NODE,
    AnalysisContext,
    create_article_analysis_workflow,
    overall_score,
    segment_content,
)


def paragraphs(*sizes):
    return "\n\n".join(chr(ord("a") + i) * size for i, size in enumerate(sizes))


class TestSegmentContent:
    """Test content segmentation."""

    def test_short_content_is_one_segment(self):
        segments = segment_content("Hello world.\n\nSecond paragraph.", size=2000)

        assert len(segments) == 1
        assert segments[0].content == "Hello world.\n\nSecond paragraph."
        assert segments[0].type == "text"
        assert segments[0].start_index == 0

    def test_splits_when_size_exceeded(self):
        content = paragraphs(100, 100, 100)

        segments = segment_content(content, size=150, overlap=0)

        assert [s.content for s in segments] == ["a" * 100, "b" * 100, "c" * 100]
        assert [s.id for s in segments] == [0, 1, 2]

    def test_indexes_point_into_content(self):
        content = "  intro text\n\n\nsecond block  "
        segments = segment_content(content, size=5, overlap=0)

        for segment in segments:
            assert content[segment.start_index:segment.end_index] == segment.content

    def test_overlap_limited_to_a_third_of_blocks(self):
        content = paragraphs(10, 10, 10, 10)

        segments = segment_content(content, size=35, overlap=1)

        # first segment holds three blocks, so one block carries over
        assert segments[0].content == "\n\n".join(["a" * 10, "b" * 10, "c" * 10])
        assert segments[1].content.startswith("c" * 10)
        assert segments[1].content.endswith("d" * 10)

    def test_no_overlap_for_small_segments(self):
        segments = segment_content(paragraphs(100, 100), size=150, overlap=2)

        assert [s.content for s in segments] == ["a" * 100, "b" * 100]

    def test_segment_types(self):
        content = "# Title\n\n> quoted words\n\n```\ncode()\n```\n\nplain"

        segments = segment_content(content, size=5, overlap=0)

        assert [s.type for s in segments] == ["heading", "quote", "code", "text"]

    def test_fenced_code_with_blank_lines_stays_whole(self):
        content = "```\nline one\n\nline two\n```\n\nafter"

        segments = segment_content(content, size=5, overlap=0)

        assert segments[0].content == "```\nline one\n\nline two\n```"
        assert segments[0].type == "code"
        assert segments[1].content == "after"

    def test_empty_content(self):
        assert segment_content("") == []
        assert segment_content("   \n\n  ") == []


class TestOverallScore:

    def test_mean_of_dimensions(self):
        analysis = DeepAnalysis("x", "y", score_dimensions=ScoreDimensions(8, 6, 7, 7))
        assert overall_score(analysis) == 7

    def test_clamped(self):
        analysis = DeepAnalysis("x", "y", score_dimensions=ScoreDimensions(0, 0, 0, 0))
        assert overall_score(analysis) == 1


class TestArticleAnalysisWorkflow:
    """Test the assembled analysis workflow."""

    @pytest.fixture
    def analyzer(self):
        return HeuristicAnalyzer()

    def make_context(self, analyzer, **overrides):
        data = dict(
            entry_id="e1",
            title="Rust in production",
            language="en",
            analyzer=analyzer,
            analysis_model="gemini-1.5-pro",
            reflection_model="gemini-1.5-pro",
            reflection_rounds=1,
            segment_size=200,
            segment_overlap=1,
        )
        data.update(overrides)
        return AnalysisContext(**data)

    def test_workflow_is_valid(self):
        workflow = create_article_analysis_workflow()
        assert workflow.validate() == ["segment", "analyze", "reflect", "score"]

    @pytest.mark.asyncio
    async def test_runs_all_stages(self, analyzer):
        workflow = create_article_analysis_workflow()
        content = (
            "Rust offers memory safety without garbage collection.\n\n"
            "> Fearless concurrency is a real advantage.\n\n"
            "```\nfn main() { println!(\"hi\"); }\n```\n\n"
            "Teams adopting Rust report fewer production incidents."
        )

        result = await workflow.execute(
            ENTRY_NODE,
            {"entry_id": "e1", "title": "Rust", "content": content},
            self.make_context(analyzer, segment_size=60),
        )

        assert result.success, result.error
        analysis = result.output["analysis"]
        assert 1 <= analysis.ai_score <= 10
        assert analysis.reflection_rounds == 1
        assert analysis.model == "gemini-1.5-pro"
        assert analysis.main_points
        assert analysis.key_quotes == ["Fearless concurrency is a real advantage."]
        assert "rust" in analysis.tags

    @pytest.mark.asyncio
    async def test_reflection_failure_keeps_first_analysis(self, analyzer):
        analyzer.refine = AsyncMock(side_effect=RuntimeError("reflection provider down"))
        workflow = create_article_analysis_workflow()

        result = await workflow.execute(
            ENTRY_NODE,
            {"entry_id": "e1", "title": "T", "content": "Some meaningful content here."},
            self.make_context(analyzer),
        )

        assert result.success
        assert result.output["analysis"].reflection_rounds == 0
        assert result.output["analysis"].ai_score is not None

    @pytest.mark.asyncio
    async def test_zero_reflection_rounds_skips_refine(self, analyzer):
        analyzer.refine = AsyncMock()
        workflow = create_article_analysis_workflow()

        result = await workflow.execute(
            ENTRY_NODE,
            {"entry_id": "e1", "title": "T", "content": "Content."},
            self.make_context(analyzer, reflection_rounds=0),
        )

        assert result.success
        analyzer.refine.assert_not_called()

    @pytest.mark.asyncio
    async def test_empty_content_fails(self, analyzer):
        workflow = create_article_analysis_workflow()

        result = await workflow.execute(
            ENTRY_NODE, {"entry_id": "e1", "title": "T", "content": ""}, self.make_context(analyzer)
        )

        assert result.success is False
        assert isinstance(result.error, ContentValidationError)

    @pytest.mark.asyncio
    async def test_analyzer_score_is_respected(self, analyzer):
        analyzer.analyze = AsyncMock(return_value=DeepAnalysis("one", "summary", ai_score=12))
        workflow = create_article_analysis_workflow()

        result = await workflow.execute(
            ENTRY_NODE,
            {"entry_id": "e1", "title": "T", "content": "Content."},
            self.make_context(analyzer, reflection_rounds=0),
        )

        assert result.output["analysis"].ai_score == 10
