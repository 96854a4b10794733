"""Sliding-window request pacing for registry calls.

A caller that would exceed the budget is suspended until the oldest
request leaves the window; exceeding the budget is never an error.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import TYPE_CHECKING

from .errors import ValidationError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from types import TracebackType

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RateLimit:
    """At most ``count`` requests per ``window`` seconds."""

    count: int = 100
    window: float = 60.0


class SlidingWindowRateLimiter:
    """Async limiter allowing ``max_requests`` per trailing ``window`` seconds.

    Args:
        max_requests: Requests allowed inside any window.
        window: Window length in seconds.
        clock: Monotonic time source.
        sleep: Coroutine function used to suspend callers.
    """

    def __init__(
        self,
        max_requests: int = 100,
        window: float = 60.0,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if max_requests <= 0:
            raise ValidationError(f"max_requests must be positive, got {max_requests}")
        if window <= 0:
            raise ValidationError(f"window must be positive, got {window}")
        self.max_requests = max_requests
        self.window = window
        self._clock = clock
        self._sleep = sleep
        self._timestamps: deque[float] = deque()
        self._lock = threading.Lock()
        self.waits = 0

    @classmethod
    def from_limit(cls, limit: RateLimit, **kwargs: object) -> SlidingWindowRateLimiter:
        return cls(limit.count, limit.window, **kwargs)  # type: ignore[arg-type]

    def __repr__(self) -> str:
        return f"SlidingWindowRateLimiter(max_requests={self.max_requests}, window={self.window})"

    def _reserve(self) -> float:
        """Record a request and return 0, or return how long to wait."""
        with self._lock:
            now = self._clock()
            while self._timestamps and now - self._timestamps[0] >= self.window:
                self._timestamps.popleft()
            if len(self._timestamps) < self.max_requests:
                self._timestamps.append(now)
                return 0.0
            return self._timestamps[0] + self.window - now

    async def acquire(self) -> None:
        """Wait until a request fits in the window, then record it."""
        while True:
            delay = self._reserve()
            if delay <= 0:
                return
            self.waits += 1
            logger.debug("Rate limit of %d/%ss reached, waiting %.3fs", self.max_requests, self.window, delay)
            await self._sleep(delay)

    @property
    def in_window(self) -> int:
        """Number of requests recorded inside the current window."""
        with self._lock:
            now = self._clock()
            return sum(1 for ts in self._timestamps if now - ts < self.window)

    async def __aenter__(self) -> SlidingWindowRateLimiter:
        await self.acquire()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        return None


__all__ = [
    "RateLimit",
    "SlidingWindowRateLimiter",
]
