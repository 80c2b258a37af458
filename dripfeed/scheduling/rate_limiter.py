"""
Keyed sliding-window rate limiter.

The limiter is an ordinary object owned by whoever serves requests and is
passed into :func:`~dripfeed.scheduling.handler.handle_drip_feed_request`.
Each test or warm serverless instance gets its own, so nothing is shared
through module state.
"""

import time
from collections import deque
from typing import Callable, Deque, Dict

from dripfeed.exceptions import RateLimitExceededError


class KeyedRateLimiter:
    """Allow at most ``max_calls`` hits per key within ``window_seconds``.

    Hits older than the window expire lazily on the next access to the
    same key, and a key whose hits have all expired is forgotten.

    Args:
        max_calls: Hits allowed per window, >= 1.
        window_seconds: Window length (TTL of each hit), > 0.
        clock: Monotonic time source, injectable for tests.
    """

    def __init__(
        self,
        max_calls: int,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_calls < 1:
            raise ValueError(f"max_calls must be >= 1, got {max_calls}")
        if window_seconds <= 0:
            raise ValueError(f"window_seconds must be positive, got {window_seconds}")
        self.max_calls = max_calls
        self.window_seconds = window_seconds
        self._clock = clock
        self._hits: Dict[str, Deque[float]] = {}

    @classmethod
    def for_emergency_releases(cls, settings: "Settings") -> "KeyedRateLimiter":  # noqa: F821
        """Limiter sized by ``emergency_rate_limit`` / ``emergency_rate_window_seconds``."""
        return cls(settings.emergency_rate_limit, settings.emergency_rate_window_seconds)

    def _prune(self, key: str, now: float) -> Deque[float]:
        """Drop expired hits; keys with no live hits are not kept."""
        hits = self._hits.get(key)
        if hits is None:
            return deque()
        while hits and now - hits[0] >= self.window_seconds:
            hits.popleft()
        if not hits:
            del self._hits[key]
        return hits

    def hit(self, key: str) -> None:
        """Record a hit for *key*.

        Raises:
            RateLimitExceededError: If *key* already used its allowance.
                The rejected hit is not recorded.
        """
        now = self._clock()
        hits = self._prune(key, now)
        if len(hits) >= self.max_calls:
            retry_after = self.window_seconds - (now - hits[0])
            raise RateLimitExceededError(key, retry_after)
        self._hits.setdefault(key, hits).append(now)

    def remaining(self, key: str) -> int:
        """Hits still allowed for *key* in the current window."""
        hits = self._prune(key, self._clock())
        return self.max_calls - len(hits)

    def reset(self, key: str) -> None:
        """Forget every hit recorded for *key*."""
        self._hits.pop(key, None)


__all__ = ["KeyedRateLimiter"]
