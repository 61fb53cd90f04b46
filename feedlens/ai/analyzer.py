"""
Content Analyzer Interface
==========================

Abstract capability the pipeline calls for preliminary screening, deep
analysis, refinement and embeddings, plus the result types it returns.
Concrete providers (hosted LLMs, local heuristics) implement
``ContentAnalyzer``; nothing else in the pipeline depends on a provider.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class Segment:
    """Contiguous slice of an entry's content."""
    id: int
    content: str
    start_index: int
    end_index: int
    type: str = "text"  # text | code | quote | heading


@dataclass
class PreliminaryEvaluation:
    """Result of the cheap first-pass screening."""
    ignore: bool
    reason: str
    value: int  # 1-5
    summary: str
    language: str
    confidence: float = 0.5


@dataclass
class ScoreDimensions:
    depth: float = 5.0
    quality: float = 5.0
    practicality: float = 5.0
    novelty: float = 5.0

    def as_dict(self) -> Dict[str, float]:
        return {
            "depth": self.depth,
            "quality": self.quality,
            "practicality": self.practicality,
            "novelty": self.novelty,
        }


@dataclass
class DeepAnalysis:
    """Rich analysis produced for entries that passed screening."""
    one_line_summary: str
    summary: str
    main_points: List[Dict[str, Any]] = field(default_factory=list)
    key_quotes: List[str] = field(default_factory=list)
    domain: str = ""
    subcategory: str = ""
    tags: List[str] = field(default_factory=list)
    score_dimensions: ScoreDimensions = field(default_factory=ScoreDimensions)
    ai_score: Optional[int] = None  # 1-10
    model: str = ""
    reflection_rounds: int = 0


class ContentAnalyzer(ABC):
    """Provider-agnostic analysis capability."""

    name: str = "analyzer"

    @abstractmethod
    async def evaluate_preliminary(
        self, title: str, content: str, language: str, model: str
    ) -> PreliminaryEvaluation:
        """Screen one entry.

        Raises:
            AnalysisError: If the provider fails (retried by the queue)
        """

    @abstractmethod
    async def analyze(
        self, title: str, segments: List[Segment], language: str, model: str
    ) -> DeepAnalysis:
        """Produce the deep analysis from content segments."""

    @abstractmethod
    async def refine(self, analysis: DeepAnalysis, content: str, model: str) -> DeepAnalysis:
        """Review and improve an analysis. One call is one reflection round."""

    @abstractmethod
    async def embed(self, text: str, dimension: int) -> List[float]:
        """Embedding of ``text`` with exactly ``dimension`` components."""

    async def close(self) -> None:
        """Release provider resources."""
