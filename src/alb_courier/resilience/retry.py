"""
Retry Pattern Implementation

Provides bounded retries with exponential, linear or constant backoff and
optional jitter. Shared by every polling or remote operation in the
package: load balancer API calls and metric provider queries.
"""

import asyncio
import logging
import random
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, TypeVar

from botocore.exceptions import ClientError

T = TypeVar("T")
logger = logging.getLogger(__name__)

# botocore error codes that indicate a transient, retryable condition
TRANSIENT_AWS_ERROR_CODES = frozenset(
    {
        "Throttling",
        "ThrottlingException",
        "RequestLimitExceeded",
        "TooManyRequestsException",
        "ServiceUnavailable",
        "InternalFailure",
    }
)


class RetryStrategy(Enum):
    """Retry strategy types."""

    EXPONENTIAL = "exponential"
    LINEAR = "linear"
    CONSTANT = "constant"


class RetryError(Exception):
    """Exception raised when all retry attempts are exhausted."""

    def __init__(self, message: str, attempts: int, last_exception: Exception | None):
        super().__init__(message)
        self.attempts = attempts
        self.last_exception = last_exception


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    # Maximum number of attempts, including the first one
    max_attempts: int = 3

    # Base delay between retries (seconds)
    base_delay: float = 1.0

    # Maximum delay between retries (seconds)
    max_delay: float = 30.0

    strategy: RetryStrategy = RetryStrategy.EXPONENTIAL

    backoff_multiplier: float = 2.0

    # Add random jitter to prevent thundering herd
    jitter: bool = True

    # Maximum jitter factor (0.0 to 1.0)
    jitter_factor: float = 0.1

    # Exception types that trigger retries
    retryable_exceptions: tuple = (Exception,)

    # Exception types that should not be retried
    non_retryable_exceptions: tuple = ()

    # Retry only when this predicate holds
    retry_condition: Callable[[Exception], bool] | None = None


class BackoffStrategy(ABC):
    """Abstract base class for backoff strategies."""

    def __init__(self, jitter: bool = True, jitter_factor: float = 0.1):
        self.jitter = jitter
        self.jitter_factor = jitter_factor

    @abstractmethod
    def raw_delay(self, attempt: int, base_delay: float) -> float:
        """Delay for the given attempt before capping and jitter."""

    def calculate_delay(self, attempt: int, base_delay: float, max_delay: float) -> float:
        delay = min(self.raw_delay(attempt, base_delay), max_delay)

        if self.jitter:
            jitter_range = delay * self.jitter_factor
            delay = max(0.0, delay + random.uniform(-jitter_range, jitter_range))

        return delay


class ExponentialBackoff(BackoffStrategy):
    """Exponential backoff with optional jitter."""

    def __init__(self, multiplier: float = 2.0, jitter: bool = True, jitter_factor: float = 0.1):
        super().__init__(jitter, jitter_factor)
        self.multiplier = multiplier

    def raw_delay(self, attempt: int, base_delay: float) -> float:
        return base_delay * (self.multiplier ** (attempt - 1))


class LinearBackoff(BackoffStrategy):
    """Linear backoff with optional jitter."""

    def __init__(self, increment: float = 1.0, jitter: bool = True, jitter_factor: float = 0.1):
        super().__init__(jitter, jitter_factor)
        self.increment = increment

    def raw_delay(self, attempt: int, base_delay: float) -> float:
        return base_delay + (self.increment * (attempt - 1))


class ConstantBackoff(BackoffStrategy):
    """Constant delay with optional jitter."""

    def raw_delay(self, attempt: int, base_delay: float) -> float:
        return base_delay


class RetryManager:
    """Manages retry logic with configurable strategies."""

    def __init__(self, config: RetryConfig):
        if config.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.config = config
        self._backoff_strategy = self._create_backoff_strategy()

    def _create_backoff_strategy(self) -> BackoffStrategy:
        if self.config.strategy == RetryStrategy.LINEAR:
            return LinearBackoff(
                increment=self.config.base_delay,
                jitter=self.config.jitter,
                jitter_factor=self.config.jitter_factor,
            )
        if self.config.strategy == RetryStrategy.CONSTANT:
            return ConstantBackoff(jitter=self.config.jitter, jitter_factor=self.config.jitter_factor)
        return ExponentialBackoff(
            multiplier=self.config.backoff_multiplier,
            jitter=self.config.jitter,
            jitter_factor=self.config.jitter_factor,
        )

    def _is_retryable(self, exception: Exception) -> bool:
        if isinstance(exception, self.config.non_retryable_exceptions):
            return False

        if not isinstance(exception, self.config.retryable_exceptions):
            return False

        if self.config.retry_condition:
            return self.config.retry_condition(exception)

        return True

    def calculate_delay(self, attempt: int) -> float:
        return self._backoff_strategy.calculate_delay(
            attempt, self.config.base_delay, self.config.max_delay
        )

    async def execute_async(self, func: Callable[..., Awaitable[T]], *args, **kwargs) -> T:
        """Execute async function with retry logic.

        Exceptions that are not retryable propagate unchanged; exhausting the
        attempts on a retryable one raises RetryError.
        """
        last_exception = None

        for attempt in range(1, self.config.max_attempts + 1):
            try:
                result = await func(*args, **kwargs)

                if attempt > 1:
                    logger.info(f"Call succeeded on attempt {attempt}")

                return result

            except Exception as e:
                last_exception = e

                if not self._is_retryable(e):
                    raise

                if attempt >= self.config.max_attempts:
                    break

                delay = self.calculate_delay(attempt)
                logger.warning(
                    f"Attempt {attempt}/{self.config.max_attempts} failed: {e!s}; "
                    f"retrying in {delay:.2f}s"
                )
                await asyncio.sleep(delay)

        raise RetryError(
            f"Call failed after {self.config.max_attempts} attempts",
            self.config.max_attempts,
            last_exception,
        )


def aws_error_code(exception: BaseException) -> str | None:
    """Return the botocore error code of a ClientError, if any."""
    if isinstance(exception, ClientError):
        return exception.response.get("Error", {}).get("Code")
    return None


def is_transient_aws_error(exception: Exception) -> bool:
    """True for throttling and 5xx-style AWS errors."""
    return aws_error_code(exception) in TRANSIENT_AWS_ERROR_CODES


AWS_THROTTLING_RETRY_CONFIG = RetryConfig(
    max_attempts=5,
    base_delay=0.5,
    max_delay=20.0,
    strategy=RetryStrategy.EXPONENTIAL,
    backoff_multiplier=2.0,
    jitter=True,
    retryable_exceptions=(ClientError,),
    retry_condition=is_transient_aws_error,
)
