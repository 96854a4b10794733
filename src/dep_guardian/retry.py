"""Retry with exponential backoff, shared by every registry call."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, TypeVar

from .errors import ValidationError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """How often and how patiently to retry transient failures.

    Attributes:
        max_retries: Retries after the first attempt (total attempts is one more).
        base_delay: Delay before the first retry, in seconds.
        max_delay: Upper bound for a single delay; None for no bound.
    """

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float | None = None

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValidationError(f"max_retries must not be negative, got {self.max_retries}")
        if self.base_delay < 0:
            raise ValidationError(f"base_delay must not be negative, got {self.base_delay}")

    @property
    def attempts(self) -> int:
        return self.max_retries + 1

    def delay_for(self, attempt: int) -> float:
        """Backoff before retry number ``attempt + 1``: ``base_delay * 2 ** attempt``."""
        delay = self.base_delay * 2**attempt
        if self.max_delay is not None:
            return min(delay, self.max_delay)
        return delay


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    is_transient: Callable[[BaseException], bool],
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    describe: str = "operation",
) -> T:
    """Run ``operation``, retrying transient failures with exponential backoff.

    Args:
        operation: Zero-argument coroutine function to run.
        policy: Retry budget and delays.
        is_transient: Decides whether an exception is worth retrying.
        sleep: Coroutine function used between attempts.
        describe: Label for log messages.

    Returns:
        The operation's result.

    Raises:
        Exception: The last exception once retries are exhausted, or the
            first non-transient one.
    """
    attempt = 0
    while True:
        try:
            return await operation()
        except Exception as exc:
            if not is_transient(exc) or attempt >= policy.max_retries:
                raise
            delay = policy.delay_for(attempt)
            attempt += 1
            logger.debug(
                "%s failed (%s), retry %d/%d in %.2fs",
                describe,
                exc,
                attempt,
                policy.max_retries,
                delay,
            )
            await sleep(delay)


__all__ = [
    "RetryPolicy",
    "retry_async",
]
