"""
Keyed Locks - In-process asyncio.Lock per key.

Used to serialize quota credits per gateway account, daily claims per
identity, and donations per key hash. Locks live in this process only;
a multi-replica deployment needs a shared lock in front of the gateway.
"""

import asyncio
from collections.abc import AsyncIterator, Hashable, Iterable
from contextlib import asynccontextmanager


class KeyedLocks:
    """Map of key -> asyncio.Lock, dropping entries nobody is waiting on."""

    def __init__(self) -> None:
        self._locks: dict[Hashable, asyncio.Lock] = {}
        self._refs: dict[Hashable, int] = {}

    def _acquire_ref(self, key: Hashable) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        self._refs[key] = self._refs.get(key, 0) + 1
        return lock

    def _release_ref(self, key: Hashable) -> None:
        remaining = self._refs[key] - 1
        if remaining == 0:
            del self._refs[key]
            del self._locks[key]
        else:
            self._refs[key] = remaining

    def locked(self, key: Hashable) -> bool:
        """True while some task holds the lock for key."""
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def lock(self, key: Hashable) -> AsyncIterator[None]:
        """Hold the lock for a single key."""
        lock = self._acquire_ref(key)
        try:
            async with lock:
                yield
        finally:
            self._release_ref(key)

    @asynccontextmanager
    async def hold_many(self, keys: Iterable[str]) -> AsyncIterator[None]:
        """
        Hold the locks for several keys at once.

        Keys are acquired in sorted order so two callers with overlapping
        sets cannot deadlock.
        """
        referenced: list[str] = []
        held: list[asyncio.Lock] = []
        try:
            for key in sorted(set(keys)):
                lock = self._acquire_ref(key)
                referenced.append(key)
                await lock.acquire()
                held.append(lock)
            yield
        finally:
            for lock in reversed(held):
                lock.release()
            for key in referenced:
                self._release_ref(key)
