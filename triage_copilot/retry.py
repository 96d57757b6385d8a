"""
Retry policy shared by the retrieval, analysis, webhook and email steps.

Wraps tenacity so every backend call uses the same attempt limit and
exponential backoff schedule (1s, 2s, 4s by default), and so the schedule
can be tested on its own with an injected sleep function.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, TypeVar

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .config import RetryConfig


logger = logging.getLogger(__name__)

T = TypeVar("T")


def _log_before_sleep(description: str) -> Callable[[RetryCallState], None]:
    def log_attempt(retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        logger.warning(
            f"{description}: attempt {retry_state.attempt_number} failed "
            f"({exc}); retrying in {delay:.1f}s"
        )
    return log_attempt


@dataclass(frozen=True)
class RetryPolicy:
    """
    Fixed-attempt retry with exponential backoff.

    Attributes:
        max_attempts: Total number of attempts, including the first.
        base_delay: Wait after the first failure, in seconds.
        max_delay: Upper bound for a single wait.
        sleep: Function used to wait between attempts.
        retry_on: Exception types that trigger another attempt.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 4.0
    sleep: Callable[[float], None] = time.sleep
    retry_on: tuple[type[BaseException], ...] = (Exception,)

    @classmethod
    def from_config(
        cls,
        config: RetryConfig,
        sleep: Callable[[float], None] = time.sleep,
    ) -> "RetryPolicy":
        """Build a policy from the RETRY_* settings."""
        return cls(
            max_attempts=config.max_attempts,
            base_delay=config.base_delay,
            max_delay=config.max_delay,
            sleep=sleep,
        )

    def delay_for(self, attempt_number: int) -> float:
        """Wait applied after the given (1-based) failed attempt."""
        return min(self.base_delay * 2 ** (attempt_number - 1), self.max_delay)

    def schedule(self) -> list[float]:
        """Waits that a fully failing call goes through, in order."""
        return [self.delay_for(n) for n in range(1, self.max_attempts)]

    def retrying(self, description: str = "operation") -> Retrying:
        """
        Build a tenacity controller for one logical call.

        Use it either as a callable wrapper or as an iterator of attempts
        when the attempt number is needed inside the call.
        """
        return Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.base_delay, max=self.max_delay),
            retry=retry_if_exception_type(self.retry_on),
            sleep=self.sleep,
            reraise=True,
            before_sleep=_log_before_sleep(description),
        )

    def call(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """
        Run `fn` under this policy.

        Returns:
            The first successful result.

        Raises:
            The exception from the last attempt once attempts are exhausted.
        """
        description = getattr(fn, "__qualname__", getattr(fn, "__name__", "operation"))
        return self.retrying(description)(fn, *args, **kwargs)
