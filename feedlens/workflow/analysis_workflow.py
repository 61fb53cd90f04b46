"""
Article analysis workflow: segment -> analyze -> reflect -> score.
"""

import re
from dataclasses import dataclass
from typing import Any, Dict, List, Tuple

from .orchestrator import FunctionNode, WorkflowOrchestrator
from ..ai.analyzer import ContentAnalyzer, DeepAnalysis, Segment
from ..utils.exceptions import ContentValidationError
from ..utils.logging import get_logger_for_component

ANALYSIS_WORKFLOW_ID = "article-analysis"
ENTRY_NODE = "segment"

_BLOCK_SEPARATOR = re.compile(r"\n\s*\n")

logger = get_logger_for_component("analysis_workflow")


@dataclass
class AnalysisContext:
    """Per-run collaborators and parameters shared by all nodes."""
    entry_id: str
    title: str
    language: str
    analyzer: ContentAnalyzer
    analysis_model: str
    reflection_model: str
    reflection_rounds: int = 1
    segment_size: int = 2000
    segment_overlap: int = 1


def _append_block(blocks: List[Tuple[str, int, int]], content: str, start: int, end: int) -> None:
    text = content[start:end]
    stripped = text.strip()
    if stripped:
        offset = start + len(text) - len(text.lstrip())
        blocks.append((stripped, offset, offset + len(stripped)))


def _split_blocks(content: str) -> List[Tuple[str, int, int]]:
    """Paragraph blocks with their character spans; fenced code stays whole."""
    raw: List[Tuple[str, int, int]] = []
    pos = 0
    for match in _BLOCK_SEPARATOR.finditer(content):
        raw.append((content[pos:match.start()], pos, match.start()))
        pos = match.end()
    raw.append((content[pos:], pos, len(content)))

    blocks: List[Tuple[str, int, int]] = []
    fence_start = None
    for text, start, end in raw:
        unbalanced = text.count("```") % 2 == 1
        if fence_start is None:
            if unbalanced:
                fence_start = start
                continue
            _append_block(blocks, content, start, end)
        elif unbalanced:
            _append_block(blocks, content, fence_start, end)
            fence_start = None

    if fence_start is not None:
        _append_block(blocks, content, fence_start, len(content))
    return blocks


def _segment_type(text: str) -> str:
    if text.startswith("```"):
        return "code"
    if text.startswith(">"):
        return "quote"
    if text.startswith("#"):
        return "heading"
    return "text"


def segment_content(content: str, size: int = 2000, overlap: int = 1) -> List[Segment]:
    """Split content into segments of roughly ``size`` characters.

    A segment closes when the next block would push it past ``size``; the
    next segment then starts with the last ``min(overlap, blocks // 3)``
    blocks of the closed one.
    """
    blocks = _split_blocks(content or "")
    segments: List[Segment] = []
    current: List[Tuple[str, int, int]] = []
    current_length = 0

    def flush():
        text = "\n\n".join(block[0] for block in current)
        segments.append(Segment(
            id=len(segments),
            content=text,
            start_index=current[0][1],
            end_index=current[-1][2],
            type=_segment_type(text),
        ))

    for block in blocks:
        if current and current_length + len(block[0]) > size:
            flush()
            keep = min(overlap, len(current) // 3)
            current = current[-keep:] if keep > 0 else []
            current_length = sum(len(b[0]) for b in current)
        current.append(block)
        current_length += len(block[0])

    if current:
        flush()
    return segments


def overall_score(analysis: DeepAnalysis) -> int:
    """Mean of the score dimensions, on a 1-10 scale."""
    dims = list(analysis.score_dimensions.as_dict().values())
    return max(1, min(10, int(round(sum(dims) / len(dims)))))


async def _segment(node_input: Dict[str, Any], ctx: AnalysisContext) -> Dict[str, Any]:
    content = node_input.get("content") or ""
    if not content.strip():
        raise ContentValidationError("no content", entry_id=ctx.entry_id)
    segments = segment_content(content, ctx.segment_size, ctx.segment_overlap)
    logger.debug(f"Entry {ctx.entry_id} split into {len(segments)} segments")
    return {"segments": segments}


async def _analyze(node_input: Dict[str, Any], ctx: AnalysisContext) -> Dict[str, Any]:
    analysis = await ctx.analyzer.analyze(
        ctx.title, node_input["segments"], ctx.language, ctx.analysis_model
    )
    if not analysis.model:
        analysis.model = ctx.analysis_model
    return {"analysis": analysis}


async def _reflect(node_input: Dict[str, Any], ctx: AnalysisContext) -> Dict[str, Any]:
    analysis = node_input["analysis"]
    for _ in range(ctx.reflection_rounds):
        analysis = await ctx.analyzer.refine(analysis, node_input.get("content", ""), ctx.reflection_model)
    return {"analysis": analysis}


def _keep_unrefined(error: Exception, node_input: Dict[str, Any], ctx: AnalysisContext) -> Dict[str, Any]:
    logger.warning(f"Reflection failed for entry {ctx.entry_id}, keeping first analysis: {error}")
    return {"analysis": node_input["analysis"]}


async def _score(node_input: Dict[str, Any], ctx: AnalysisContext) -> Dict[str, Any]:
    analysis: DeepAnalysis = node_input["analysis"]
    if analysis.ai_score is None:
        analysis.ai_score = overall_score(analysis)
    else:
        analysis.ai_score = max(1, min(10, int(analysis.ai_score)))
    return {"analysis": analysis}


def create_article_analysis_workflow() -> WorkflowOrchestrator:
    """Build and validate the deep analysis workflow."""
    workflow = WorkflowOrchestrator(ANALYSIS_WORKFLOW_ID)
    workflow.register_nodes([
        FunctionNode("segment", _segment, name="Segment content"),
        FunctionNode("analyze", _analyze, name="Deep analysis"),
        FunctionNode("reflect", _reflect, name="Reflection", on_error=_keep_unrefined),
        FunctionNode("score", _score, name="Score"),
    ])
    workflow.connect("segment", "analyze", "reflect", "score")
    workflow.validate()
    return workflow
