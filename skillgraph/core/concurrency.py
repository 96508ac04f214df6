"""Async pacing and bounded fan-out helpers."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Iterable
from typing import TypeVar

T = TypeVar("T")


class AsyncRateLimiter:
    """Token-interval rate limiter for async request pacing."""

    def __init__(self, rate_per_second: float) -> None:
        self.rate = max(rate_per_second, 0.001)
        self.interval = 1.0 / self.rate
        self._next_time = 0.0
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        loop = asyncio.get_running_loop()
        async with self._lock:
            now = loop.time()
            wait_for = self._next_time - now
            if wait_for > 0:
                await asyncio.sleep(wait_for)
                now = loop.time()
            self._next_time = now + self.interval


async def gather_bounded(
    limit: int,
    awaitables: Iterable[Awaitable[T]],
    return_exceptions: bool = False,
) -> list[T | BaseException]:
    """Await all items with at most `limit` in flight, preserving input order."""
    semaphore = asyncio.Semaphore(max(1, limit))

    async def run_one(item: Awaitable[T]) -> T:
        async with semaphore:
            return await item

    return await asyncio.gather(
        *(run_one(item) for item in awaitables),
        return_exceptions=return_exceptions,
    )
