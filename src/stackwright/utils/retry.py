"""Retry policy with exponential backoff for adapter calls."""

import time
import random
from typing import Callable, TypeVar, Optional, Tuple

from stackwright.utils.errors import APIError, ErrorContext, error_handler
from stackwright.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar('T')


class RetryPolicy:
    """Exponential backoff retry policy for transient adapter errors.

    The policy is passed into the executor rather than baked into adapters,
    so the number of attempts and the delays are configured per run.
    """

    def __init__(
        self,
        max_attempts: int = 5,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        exponential_base: float = 2.0,
        jitter: bool = True,
        sleep: Callable[[float], None] = time.sleep,
        rng: Optional[random.Random] = None
    ):
        """Initialize retry policy.

        Args:
            max_attempts: Total number of attempts, including the first call
            base_delay: Delay in seconds before the first retry
            max_delay: Upper bound for a single delay
            exponential_base: Base for exponential backoff calculation
            jitter: Whether to add random jitter to delay
            sleep: Function used to wait between attempts
            rng: Random source for jitter
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter
        self._sleep = sleep
        self._rng = rng or random.Random()

    def should_retry(self, error: APIError, attempt: int) -> bool:
        """Determine if an error should trigger another attempt.

        Args:
            error: The classified error
            attempt: Attempt number that just failed (1-indexed)

        Returns:
            True if the error is retryable and attempts remain
        """
        return error.retryable and attempt < self.max_attempts

    def get_delay(self, attempt: int) -> float:
        """Calculate delay before the next attempt.

        Args:
            attempt: Attempt number that just failed (1-indexed)

        Returns:
            Delay in seconds
        """
        delay = min(
            self.base_delay * (self.exponential_base ** (attempt - 1)),
            self.max_delay
        )

        # Full jitter over the upper 50% keeps concurrent workers apart
        if self.jitter:
            delay = self._rng.uniform(delay / 2, delay)

        return delay

    def call(
        self,
        func: Callable[..., T],
        *args,
        context: Optional[ErrorContext] = None,
        **kwargs
    ) -> Tuple[T, int]:
        """Execute a function with retry logic.

        Args:
            func: Function to execute
            *args: Positional arguments for the function
            context: Error context attached to classified errors
            **kwargs: Keyword arguments for the function

        Returns:
            Tuple of (result, number of attempts made)

        Raises:
            APIError: The classified error once it is permanent or attempts run out
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                error = error_handler.classify(e, context)
                error.context.additional_info = {'attempts': attempt}

                if not self.should_retry(error, attempt):
                    if error.retryable:
                        logger.error(f"All {self.max_attempts} attempts exhausted: {error.message}")
                    if error is e:
                        raise
                    raise error from e

                delay = self.get_delay(attempt)
                logger.warning(
                    f"Attempt {attempt}/{self.max_attempts} failed: {error.message}. "
                    f"Retrying in {delay:.2f}s..."
                )
                self._sleep(delay)
                continue

            if attempt > 1:
                logger.info(f"Operation succeeded after {attempt - 1} retries")
            return result, attempt

    @classmethod
    def from_settings(cls, settings, **overrides) -> 'RetryPolicy':
        """Build a policy from ``RetrySettings``."""
        params = {
            'max_attempts': settings.max_attempts,
            'base_delay': settings.base_delay,
            'max_delay': settings.max_delay,
            'jitter': settings.jitter,
        }
        params.update(overrides)
        return cls(**params)
