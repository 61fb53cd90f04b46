"""
FeedLens AI Module
==================

Provider-agnostic analyzer interface, the local heuristic analyzer, language
detection and model selection.
"""

from .analyzer import ContentAnalyzer, DeepAnalysis, PreliminaryEvaluation, ScoreDimensions, Segment
from .heuristic_analyzer import HeuristicAnalyzer
from .language import AnalysisStage, ModelSelector, detect_language

__all__ = [
    "ContentAnalyzer",
    "DeepAnalysis",
    "PreliminaryEvaluation",
    "ScoreDimensions",
    "Segment",
    "HeuristicAnalyzer",
    "AnalysisStage",
    "ModelSelector",
    "detect_language",
]
