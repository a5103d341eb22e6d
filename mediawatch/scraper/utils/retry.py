"""
Retry utilities for the scraper service.

Provides exponential backoff retry mechanism with jitter and customizable
exception handling.
"""

import asyncio
import logging
import random
from typing import Awaitable, Callable, Tuple, Type, TypeVar, Union

logger = logging.getLogger(__name__)

R = TypeVar("R")


class RetryError(Exception):
    """Raised when all retry attempts have been exhausted"""

    def __init__(self, attempts: int, last_exception: Exception):
        self.attempts = attempts
        self.last_exception = last_exception
        super().__init__(f"Failed after {attempts} attempts. Last error: {last_exception}")


class RetryConfig:
    """Configuration for retry behavior"""

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        exponential_base: float = 2.0,
        jitter: bool = True,
        jitter_range: float = 0.1,
    ):
        """
        Initialize retry configuration.

        Args:
            max_attempts: Maximum number of attempts, including the first one
            base_delay: Base delay in seconds
            max_delay: Maximum delay in seconds
            exponential_base: Base for exponential backoff calculation
            jitter: Whether to add random jitter to delays
            jitter_range: Range of jitter (0.0 to 1.0)
        """
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter
        self.jitter_range = jitter_range

    def calculate_delay(self, attempt: int) -> float:
        """
        Calculate delay for given attempt number.

        Args:
            attempt: Current attempt number (0-indexed)

        Returns:
            Delay in seconds
        """
        delay = self.base_delay * (self.exponential_base**attempt)
        delay = min(delay, self.max_delay)

        if self.jitter and self.jitter_range > 0:
            jitter_amount = delay * self.jitter_range
            delay = max(0, delay + random.uniform(-jitter_amount, jitter_amount))

        return delay


async def retry_with_config(
    func: Callable[[], Awaitable[R]],
    config: RetryConfig,
    exceptions: Union[Type[Exception], Tuple[Type[Exception], ...]] = (Exception,),
) -> R:
    """
    Retry an async callable with custom retry configuration.

    Args:
        func: Zero-argument async callable to retry
        config: Retry configuration
        exceptions: Exception types to catch and retry

    Returns:
        Result of successful call

    Raises:
        RetryError: If all retry attempts fail
        Exception: If func raises an exception not in the exceptions list
    """
    last_exception = None
    name = getattr(func, "__name__", repr(func))

    for attempt in range(config.max_attempts):
        try:
            result = await func()

            if attempt > 0:
                logger.info(
                    f"{name} succeeded after {attempt + 1} attempts",
                    extra={"function": name, "attempts": attempt + 1},
                )

            return result

        except exceptions as e:
            last_exception = e

            if attempt + 1 >= config.max_attempts:
                break

            delay = config.calculate_delay(attempt)

            logger.warning(
                f"{name} failed, retrying in {delay:.2f}s",
                extra={
                    "function": name,
                    "attempt": attempt + 1,
                    "max_attempts": config.max_attempts,
                    "delay": delay,
                    "exception": str(e),
                    "exception_type": type(e).__name__,
                },
            )

            if delay > 0:
                await asyncio.sleep(delay)

    raise RetryError(config.max_attempts, last_exception or Exception("No exception captured during retries"))


# Transient broker hiccups: a handful of quick attempts before escalating
BROKER_RETRY_CONFIG = RetryConfig(
    max_attempts=5,
    base_delay=0.5,
    max_delay=10.0,
    exponential_base=2.0,
    jitter=True,
)
