"""
Concurrency Limiter

A counting permit pool bounding how many network operations run at
once. Permits are taken with `async with limiter:` so they are returned
on success, on failure and on cancellation alike.
"""

import asyncio
import logging

logger = logging.getLogger(__name__)


class ConcurrencyLimiter:
    """
    asyncio.Semaphore plus in-flight accounting.

    `peak` records the highest number of permits held at the same time,
    which is what the batch uploader's "at most N in flight" guarantee is
    checked against.
    """

    def __init__(self, permits: int):
        if permits < 1:
            raise ValueError(f"permits must be >= 1, got {permits}")
        self.permits = permits
        self._semaphore = asyncio.Semaphore(permits)

        self.in_flight = 0
        self.peak = 0

    @property
    def available(self) -> int:
        return self.permits - self.in_flight

    async def acquire(self):
        await self._semaphore.acquire()
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)

    def release(self):
        self.in_flight -= 1
        self._semaphore.release()

    async def __aenter__(self) -> 'ConcurrencyLimiter':
        await self.acquire()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.release()

    def get_stats(self) -> dict:
        return {
            'permits': self.permits,
            'in_flight': self.in_flight,
            'peak': self.peak,
        }
