"""
Single-Flight Coalescing

Design Decision: Guarding Shared Caches
=======================================

The auth session and the per-bucket upload endpoints are read and
refilled by many concurrent uploads. Without coordination, a cold client
that starts ten uploads at once would authenticate ten times.

Options Considered:
1. asyncio.Lock around check-then-fetch
   - Correct, but serializes every cache hit behind the lock
2. Nullable field checks ("if self._session is None: fetch")
   - Races: every caller that checks before the first fetch returns fetches
3. Keyed in-flight futures (single-flight)
   - First caller starts the fetch, later callers await the same task
   - Cache hits never wait

Decision: Single-flight (option 3). The flight only lives while the fetch
runs; storing the result is the caller's job, so invalidation stays a
plain dict delete.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Hashable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T')


class SingleFlight:
    """
    Coalesces concurrent calls for the same key into one execution.

    Every caller that arrives while a fetch for `key` is running gets the
    same result (or the same exception).
    """

    def __init__(self):
        self._flights: Dict[Hashable, asyncio.Task] = {}

    def in_flight(self, key: Hashable) -> bool:
        return key in self._flights

    async def do(self, key: Hashable, fn: Callable[[], Awaitable[T]]) -> T:
        """Run fn() once for all concurrent callers of `key`."""
        task = self._flights.get(key)
        if task is None:
            task = asyncio.ensure_future(fn())
            self._flights[key] = task
            task.add_done_callback(lambda t, k=key: self._forget(k, t))
        else:
            logger.debug(f"Joining in-flight fetch for {key!r}")

        # shield: one cancelled waiter must not cancel the shared fetch
        return await asyncio.shield(task)

    def _forget(self, key: Hashable, task: asyncio.Task):
        if self._flights.get(key) is task:
            del self._flights[key]
        # mark the exception retrieved when every waiter was cancelled
        if not task.cancelled():
            task.exception()
