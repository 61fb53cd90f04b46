"""
FeedLens Retry Backoff
======================

Delay calculation for job retries. The job queue stores the computed delay as
the job's next ``available_at``; nothing here sleeps.
"""

from dataclasses import dataclass


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""
    max_attempts: int = 3
    base_delay: float = 1.0  # seconds
    max_delay: float = 3600.0
    exponential_base: float = 2.0

    def can_retry(self, attempts_made: int) -> bool:
        """Whether another attempt is allowed after ``attempts_made`` attempts."""
        return attempts_made < self.max_attempts


class BackoffCalculator:
    """Maps an attempt number (1-based) to the wait before the next attempt.

    Delays grow exponentially from ``base_delay`` and are capped at ``max_delay``.
    """

    def __init__(self, config: RetryConfig):
        self.config = config

    def calculate_delay(self, attempt: int) -> float:
        """Delay in seconds after failed attempt number ``attempt``."""
        attempt = max(1, attempt)
        delay = self.config.base_delay * (self.config.exponential_base ** (attempt - 1))
        return max(0.0, min(delay, self.config.max_delay))
