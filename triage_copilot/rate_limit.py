"""
Sliding-window rate limiter for ticket submissions.

State lives in an explicitly owned `RateLimitStore` handed to the limiter,
so separate limiters (and tests) never share admission history.
"""

import logging
import threading
import time
from typing import Callable, Optional


logger = logging.getLogger(__name__)


class RateLimitExceeded(Exception):
    """Raised when a client exceeds its submission allowance."""

    def __init__(self, key: str, limit: int, window_seconds: float):
        super().__init__(
            f"Too many requests from {key}: limit is {limit} per {window_seconds:g}s"
        )
        self.key = key
        self.limit = limit
        self.window_seconds = window_seconds


class RateLimitStore:
    """Request timestamps keyed by client identity."""

    def __init__(self):
        self._lock = threading.Lock()
        self._hits: dict[str, list[float]] = {}

    def __len__(self) -> int:
        return len(self._hits)

    def __contains__(self, key: str) -> bool:
        return key in self._hits

    @property
    def lock(self) -> threading.Lock:
        return self._lock

    def get(self, key: str) -> list[float]:
        return list(self._hits.get(key, []))

    def set(self, key: str, timestamps: list[float]) -> None:
        self._hits[key] = timestamps

    def purge(self, is_stale: Callable[[list[float]], bool]) -> int:
        """Remove every key whose timestamps satisfy `is_stale`."""
        stale = [key for key, ts in self._hits.items() if is_stale(ts)]
        for key in stale:
            del self._hits[key]
        return len(stale)


class RateLimiter:
    """
    Admission check over a sliding time window.

    Rejected requests are not recorded, so a client that keeps retrying
    regains access as soon as its oldest admitted request leaves the window.
    """

    def __init__(
        self,
        limit: int = 5,
        window_seconds: float = 60.0,
        store: Optional[RateLimitStore] = None,
        clock: Callable[[], float] = time.monotonic,
        max_keys: int = 1000,
    ):
        self.limit = limit
        self.window_seconds = window_seconds
        self.store = store if store is not None else RateLimitStore()
        self._clock = clock
        self._max_keys = max_keys

    def check(self, key: str) -> bool:
        """
        Record a request from `key` if it is within the allowance.

        Returns:
            True if the request is admitted, False if it is over the limit.
        """
        now = self._clock()
        with self.store.lock:
            recent = [ts for ts in self.store.get(key) if now - ts < self.window_seconds]

            if len(recent) >= self.limit:
                logger.warning(f"Rate limit exceeded for {key}")
                return False

            recent.append(now)
            self.store.set(key, recent)

            if len(self.store) > self._max_keys:
                removed = self.store.purge(
                    lambda ts: all(now - t >= self.window_seconds for t in ts)
                )
                logger.debug(f"Purged {removed} idle rate limit keys")

        return True

    def enforce(self, key: str) -> None:
        """
        Like `check`, but raise instead of returning False.

        Raises:
            RateLimitExceeded: If the request is over the limit.
        """
        if not self.check(key):
            raise RateLimitExceeded(key, self.limit, self.window_seconds)
