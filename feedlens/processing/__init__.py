"""
FeedLens Processing Stages
==========================

Job handlers and enqueue APIs for preliminary screening and deep analysis.
"""

from .preliminary import PRELIMINARY_QUEUE, PreliminaryProcessor
from .deep_analysis import DEEP_QUEUE, DeepAnalysisProcessor

__all__ = [
    "PRELIMINARY_QUEUE",
    "PreliminaryProcessor",
    "DEEP_QUEUE",
    "DeepAnalysisProcessor",
]
