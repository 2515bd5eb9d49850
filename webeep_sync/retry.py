"""Retry policy driven by an injectable clock."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, TypeVar

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Clock(Protocol):
    """Time source used for waiting between attempts."""

    def monotonic(self) -> float:
        """Return a monotonic timestamp in seconds."""
        ...

    async def sleep(self, seconds: float) -> None:
        """Suspend the caller for ``seconds``."""
        ...


class AsyncioClock:
    """Clock backed by the running event loop."""

    def monotonic(self) -> float:
        return asyncio.get_running_loop().time()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


@dataclass(frozen=True)
class RetryPolicy:
    """Fixed-interval retry.

    Args:
        interval: Seconds to wait after a failed attempt.
        max_attempts: Total attempts including the first one. ``None`` retries
            until the operation succeeds or the awaiting task is cancelled.
    """

    interval: float = 5.0
    max_attempts: int | None = None

    def __post_init__(self) -> None:
        if self.interval < 0:
            msg = f"interval must be >= 0, got {self.interval}"
            raise ValueError(msg)
        if self.max_attempts is not None and self.max_attempts < 1:
            msg = f"max_attempts must be >= 1, got {self.max_attempts}"
            raise ValueError(msg)

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        clock: Clock,
        retry_on: tuple[type[BaseException], ...],
    ) -> T:
        """Await ``operation`` until it succeeds.

        Exceptions listed in ``retry_on`` trigger a wait of ``interval`` and a
        new attempt; the last one is re-raised once ``max_attempts`` is spent.
        Any other exception propagates immediately.
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                return await operation()
            except retry_on as exc:
                if self.max_attempts is not None and attempt >= self.max_attempts:
                    raise
                logger.debug(
                    "Attempt %d failed (%s), retrying in %.1fs", attempt, exc, self.interval
                )
                await clock.sleep(self.interval)
