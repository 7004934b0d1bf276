"""
Retry logic with exponential backoff using tenacity.
"""
from dataclasses import dataclass
from typing import Callable, Optional

import structlog
from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random_exponential,
)

from app.core.exceptions import MetricsConflictError

logger = structlog.get_logger(__name__)


@dataclass
class RetryConfig:
    """Configuration for retry logic."""

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    retryable_exceptions: tuple = (
        ConnectionError,
        TimeoutError,
        OSError,
    )


def create_async_retry_decorator(
    config: Optional[RetryConfig] = None,
    operation: str = "unknown operation",
) -> Callable:
    """Create a retry decorator for async functions with jittered exponential backoff."""

    config = config or RetryConfig()

    def _before_sleep(retry_state: RetryCallState) -> None:
        """Log retry attempts."""
        logger.warning(
            "Retrying failed async operation",
            operation=operation,
            attempt=retry_state.attempt_number,
            max_attempts=config.max_attempts,
            delay=retry_state.next_action.sleep,
            exception=str(retry_state.outcome.exception()),
        )

    return retry(
        stop=stop_after_attempt(config.max_attempts),
        wait=wait_random_exponential(
            multiplier=config.base_delay,
            max=config.max_delay,
        ),
        retry=retry_if_exception_type(config.retryable_exceptions),
        before_sleep=_before_sleep,
        reraise=True,
    )


def get_metrics_conflict_retry_config(max_attempts: int = 5) -> RetryConfig:
    """Retry configuration for optimistic-concurrency conflicts on agent metrics."""
    return RetryConfig(
        max_attempts=max_attempts,
        base_delay=0.01,
        max_delay=0.5,
        retryable_exceptions=(MetricsConflictError,),
    )
