"""
Per-key single-flight gate.

Only one in-progress operation per key is allowed; concurrent callers are
rejected instead of queued.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Hashable


class SingleFlight:
    """
    Keyed gate backed by one asyncio.Lock per key.

    Usage:
        async with gate.try_enter(driver_id) as entered:
            if not entered:
                return False
            ...
    """

    def __init__(self):
        self._locks: Dict[Hashable, asyncio.Lock] = {}

    def in_flight(self, key: Hashable) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def try_enter(self, key: Hashable) -> AsyncIterator[bool]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        if lock.locked():
            yield False
            return

        await lock.acquire()
        try:
            yield True
        finally:
            lock.release()
            # Drop idle locks so the map does not grow with every driver ever seen
            if not lock.locked() and self._locks.get(key) is lock:
                del self._locks[key]
