"""Per-key asyncio serialization for the verification workflows."""

import asyncio
from contextlib import asynccontextmanager
from typing import Dict, Hashable


class KeyedLock:
    """
    One ``asyncio.Lock`` per key, created on demand and dropped when idle.

    Two workflows holding the same key run one after the other; different
    keys never wait on each other. Only serializes within one process.
    """

    def __init__(self) -> None:
        self._locks: Dict[Hashable, asyncio.Lock] = {}
        self._waiters: Dict[Hashable, int] = {}

    @asynccontextmanager
    async def hold(self, key: Hashable):
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)

    def is_locked(self, key: Hashable) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()
