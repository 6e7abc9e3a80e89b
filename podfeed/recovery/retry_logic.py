"""
PodFeed Retry Logic
===================

Bounded retry with a fixed delay between attempts. Feed fetching uses a
single retry after a fixed delay: the batch favours forward progress over
completeness of any one source, so there is no unbounded backoff and no
circuit breaking across sources.
"""

import asyncio
import inspect
from datetime import datetime
from typing import Any, Awaitable, Callable, List, Optional, Tuple, Type
from dataclasses import dataclass, field

from ..utils.logging import get_logger_for_component
from ..utils.exceptions import is_retryable_error


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""
    max_attempts: int = 2                   # First attempt plus retries
    base_delay: float = 2.0                 # Fixed delay between attempts, seconds
    max_delay: float = 60.0                 # Maximum delay in seconds
    retry_on_exceptions: Tuple[Type[BaseException], ...] = (Exception,)


@dataclass
class RetryAttempt:
    """Information about a retry attempt."""
    attempt_number: int
    delay: float
    exception: Optional[BaseException]
    timestamp: datetime
    success: bool


@dataclass
class RetryStatistics:
    """Counters for one run's retry activity."""
    operations: int = 0
    attempts: int = 0
    retries: int = 0
    successes: int = 0
    failures: int = 0
    recent: List[RetryAttempt] = field(default_factory=list)

    def record_attempt(self, attempt: RetryAttempt) -> None:
        self.attempts += 1
        if attempt.attempt_number > 1:
            self.retries += 1
        self.recent.append(attempt)
        # Keep only recent attempts
        if len(self.recent) > 1000:
            self.recent = self.recent[-1000:]

    def as_dict(self) -> dict:
        return {
            'operations': self.operations,
            'attempts': self.attempts,
            'retries': self.retries,
            'successes': self.successes,
            'failures': self.failures,
        }


class RetryManager:
    """Retry manager with a bounded number of attempts."""

    def __init__(self, config: Optional[RetryConfig] = None):
        self.config = config or RetryConfig()
        self.logger = get_logger_for_component('retry_manager')
        self.statistics = RetryStatistics()

    async def retry_async(self,
                          func: Callable[..., Awaitable[Any]],
                          *args,
                          config: Optional[RetryConfig] = None,
                          operation: Optional[str] = None,
                          **kwargs) -> Any:
        """
        Retry an async function with the configured attempt limit and delay.

        Args:
            func: Async function to retry
            *args: Function arguments
            config: Override default retry configuration
            operation: Label used in log messages (defaults to function name)
            **kwargs: Function keyword arguments

        Returns:
            Function result if successful

        Raises:
            The last exception if all attempts fail
        """
        retry_config = config or self.config
        label = operation or getattr(func, '__name__', 'operation')
        self.statistics.operations += 1

        for attempt in range(1, retry_config.max_attempts + 1):
            try:
                if inspect.iscoroutinefunction(func):
                    result = await func(*args, **kwargs)
                else:
                    result = func(*args, **kwargs)
                    if inspect.isawaitable(result):
                        result = await result

                self.statistics.record_attempt(RetryAttempt(
                    attempt_number=attempt,
                    delay=0.0,
                    exception=None,
                    timestamp=datetime.now(),
                    success=True
                ))
                self.statistics.successes += 1

                if attempt > 1:
                    self.logger.info(f"Retry successful for {label} on attempt {attempt}")

                return result

            except Exception as e:
                if not self._should_retry_exception(e, retry_config):
                    self.logger.info(f"Not retrying {label} due to non-retryable exception: {e}")
                    self.statistics.failures += 1
                    raise

                if attempt < retry_config.max_attempts:
                    delay = self._calculate_delay(attempt, retry_config)

                    self.logger.warning(
                        f"Attempt {attempt} failed for {label}: {e}. "
                        f"Retrying in {delay:.2f}s (attempt {attempt + 1}/{retry_config.max_attempts})"
                    )

                    self.statistics.record_attempt(RetryAttempt(
                        attempt_number=attempt,
                        delay=delay,
                        exception=e,
                        timestamp=datetime.now(),
                        success=False
                    ))

                    await asyncio.sleep(delay)
                else:
                    self.statistics.record_attempt(RetryAttempt(
                        attempt_number=attempt,
                        delay=0.0,
                        exception=e,
                        timestamp=datetime.now(),
                        success=False
                    ))
                    self.statistics.failures += 1

                    self.logger.error(f"All {retry_config.max_attempts} attempts failed for {label}")
                    raise

        # max_attempts >= 1, the loop always returns or raises
        raise RuntimeError(f"No attempts made for {label}")

    def _should_retry_exception(self, exception: Exception, config: RetryConfig) -> bool:
        """Determine if an exception should trigger a retry."""
        if not isinstance(exception, config.retry_on_exceptions):
            return False
        return is_retryable_error(exception)

    def _calculate_delay(self, attempt: int, config: RetryConfig) -> float:
        """Fixed delay, capped at ``max_delay``."""
        return max(0.0, min(config.base_delay, config.max_delay))

    def get_retry_statistics(self) -> dict:
        """Get retry statistics for the run summary."""
        return self.statistics.as_dict()
