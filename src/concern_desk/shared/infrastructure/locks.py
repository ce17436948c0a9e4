"""
Keyed Locks
===========

In-process ``asyncio.Lock`` registry keyed by resource name.

Used to serialize read-modify-write sequences on a single concern
(``concern:<id>``), the commit-time capacity re-check of a handler
(``handler:<id>``) and reference number allocation (``reference:<yyyymm>``).

Lock order: concern before handler. Keys passed together to ``hold`` are
acquired in sorted order.
"""

import asyncio
import weakref
from contextlib import asynccontextmanager
from typing import AsyncIterator, List

from concern_desk.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


def concern_key(concern_id: str) -> str:
    return f"concern:{concern_id}"


def handler_key(handler_id: str) -> str:
    return f"handler:{handler_id}"


def reference_key(prefix: str) -> str:
    return f"reference:{prefix}"


class KeyedLockRegistry:
    """Hands out one ``asyncio.Lock`` per key, dropped once nobody references it."""

    def __init__(self):
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    @asynccontextmanager
    async def hold(self, *keys: str) -> AsyncIterator[None]:
        """Acquire every lock in ``keys`` (sorted, de-duplicated) for the block."""
        acquired: List[asyncio.Lock] = []
        try:
            for key in sorted(set(keys)):
                lock = self.lock_for(key)
                await lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()
