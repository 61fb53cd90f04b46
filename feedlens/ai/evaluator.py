"""
Preliminary evaluator: normalises analyzer output for the screening stage.
"""

import asyncio
import math
from typing import Any, Tuple

from .analyzer import ContentAnalyzer, PreliminaryEvaluation
from .language import AnalysisStage, ModelSelector, detect_language
from ..config.settings import AnalysisSettings
from ..utils.exceptions import AnalysisError, ErrorCode
from ..utils.logging import get_logger_for_component


def _clamp_value(raw_value: Any, model: str) -> int:
    """Round the analyzer value into 1-5.

    Raises:
        AnalysisError: Value missing or not a finite number
    """
    try:
        number = float(raw_value)
    except (TypeError, ValueError):
        number = math.nan
    if not math.isfinite(number):
        raise AnalysisError(
            f"Analyzer returned an invalid preliminary value: {raw_value!r}",
            model=model,
            stage=AnalysisStage.PRELIMINARY.value,
        )
    return max(1, min(5, int(round(number))))


def estimate_confidence(content: str, value: int) -> float:
    """Longer content is trusted more; extreme values slightly less."""
    confidence = min(0.5 + len(content) / 4000, 1.0)
    if value in (1, 5):
        confidence *= 0.8
    return round(confidence, 3)


class PreliminaryEvaluator:
    """Runs the cheap screening call with language-aware model choice."""

    def __init__(self, analyzer: ContentAnalyzer, settings: AnalysisSettings,
                 selector: ModelSelector = None):
        self.analyzer = analyzer
        self.settings = settings
        self.selector = selector or ModelSelector(settings)
        self.logger = get_logger_for_component("preliminary_evaluator")

    async def evaluate(self, title: str, content: str) -> Tuple[PreliminaryEvaluation, str]:
        """Evaluate one entry.

        Returns:
            The normalised evaluation and the model id that produced it

        Raises:
            AnalysisError: Analyzer timed out (retryable)
        """
        truncated = (content or "")[:self.settings.preliminary_content_limit]
        detected = detect_language(f"{title}\n{truncated}")
        model = self.selector.select_model(detected.language, AnalysisStage.PRELIMINARY)

        try:
            raw = await asyncio.wait_for(
                self.analyzer.evaluate_preliminary(title, truncated, detected.language, model),
                timeout=self.settings.timeout,
            )
        except asyncio.TimeoutError as e:
            raise AnalysisError(
                f"Preliminary evaluation timed out after {self.settings.timeout}s",
                error_code=ErrorCode.ANALYZER_TIMEOUT,
                model=model,
                stage=AnalysisStage.PRELIMINARY.value,
            ) from e

        value = _clamp_value(raw.value, model)
        evaluation = PreliminaryEvaluation(
            ignore=bool(raw.ignore) or value < self.settings.min_value,
            reason=raw.reason or "No reason given",
            value=value,
            summary=(raw.summary or "")[:self.settings.summary_length],
            language=raw.language or detected.language,
            confidence=estimate_confidence(truncated, value),
        )

        self.logger.debug(
            f"Preliminary evaluation: value={evaluation.value} ignore={evaluation.ignore} "
            f"language={evaluation.language} model={model}"
        )
        return evaluation, model
