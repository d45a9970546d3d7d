"""
Retry Helper Utility

Exponential backoff policy and retry statistics for the retrying LLM caller.

The delay before retry ``n`` (1-based attempt that just failed) is
``min(initial_delay * multiplier ** (n - 1), max_delay)``, which is monotonically
non-decreasing across attempts.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .exceptions import ErrorClassification

logger = logging.getLogger(__name__)


def calculate_retry_delay(
    attempt: int,
    initial_delay_ms: float = 1000,
    multiplier: float = 2.0,
    max_delay_ms: float = 10000
) -> float:
    """
    Calculate the backoff delay after a failed attempt.

    Args:
        attempt: 1-based number of the attempt that just failed
        initial_delay_ms: Delay after the first failure
        multiplier: Growth factor per attempt
        max_delay_ms: Upper bound on any single delay

    Returns:
        Delay in milliseconds
    """
    if attempt < 1:
        raise ValueError(f"attempt must be >= 1, got {attempt}")
    return min(initial_delay_ms * (multiplier ** (attempt - 1)), max_delay_ms)


@dataclass(frozen=True)
class BackoffPolicy:
    """Bounded exponential backoff configuration."""

    max_attempts: int = 3
    initial_delay_ms: float = 1000
    multiplier: float = 2.0
    max_delay_ms: float = 10000

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.multiplier < 1:
            raise ValueError("multiplier must be at least 1")

    def delay_ms(self, attempt: int) -> float:
        """Backoff delay after ``attempt`` failed."""
        return calculate_retry_delay(
            attempt,
            initial_delay_ms=self.initial_delay_ms,
            multiplier=self.multiplier,
            max_delay_ms=self.max_delay_ms
        )

    @classmethod
    def from_settings(cls, settings) -> "BackoffPolicy":
        """Build the policy from application settings."""
        config = settings.get_retry_config()
        return cls(
            max_attempts=config["max_attempts"],
            initial_delay_ms=config["initial_delay_ms"],
            multiplier=config["multiplier"],
            max_delay_ms=config["max_delay_ms"]
        )


class RetryStats:
    """Track retry statistics for monitoring."""

    def __init__(self):
        self.total_retries = 0
        self.successful_retries = 0
        self.failed_retries = 0
        self.by_classification: Dict[str, int] = {}
        self.last_error_time: Optional[datetime] = None
        self.last_error_message: Optional[str] = None

    def record_retry(self, classification: ErrorClassification):
        """Record that a failed attempt is about to be retried."""
        self.total_retries += 1
        key = classification.value
        self.by_classification[key] = self.by_classification.get(key, 0) + 1

    def record_outcome(self, success: bool, error_message: Optional[str] = None):
        """Record the final outcome of a call that needed at least one retry."""
        if success:
            self.successful_retries += 1
        else:
            self.failed_retries += 1
            self.last_error_time = datetime.now(timezone.utc)
            self.last_error_message = error_message

    def get_stats(self) -> Dict[str, Any]:
        """Get retry statistics."""
        completed = self.successful_retries + self.failed_retries
        return {
            'total_retries': self.total_retries,
            'successful_retries': self.successful_retries,
            'failed_retries': self.failed_retries,
            'by_classification': dict(self.by_classification),
            'success_rate': (
                self.successful_retries / completed
                if completed > 0 else 0.0
            ),
            'last_error_time': self.last_error_time.isoformat() if self.last_error_time else None,
            'last_error_message': self.last_error_message
        }

    def reset(self):
        """Clear all counters."""
        self.__init__()


# Global retry stats instance
retry_stats = RetryStats()
