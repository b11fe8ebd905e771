"""Per-principal asyncio locks.

Serialises lock-state and session-list mutations for one user inside this
process. Cross-process exclusion comes from row locks taken in the same
critical section (``SELECT ... FOR UPDATE``) and atomic SQL updates.
"""

import asyncio
import logging
import weakref
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

logger = logging.getLogger(__name__)


class KeyedLock:
    """Registry of asyncio locks keyed by an arbitrary hashable value.

    Locks are held weakly so idle keys do not accumulate.
    """

    def __init__(self, name: str):
        self.name = name
        self._locks: weakref.WeakValueDictionary[object, asyncio.Lock] = weakref.WeakValueDictionary()

    def _get(self, key: object) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    @asynccontextmanager
    async def hold(self, key: object, timeout: float | None = None) -> AsyncIterator[None]:
        """Acquire the lock for ``key``.

        Raises:
            TimeoutError: lock not acquired within ``timeout`` seconds
        """
        lock = self._get(key)
        if timeout is None:
            await lock.acquire()
        else:
            try:
                await asyncio.wait_for(lock.acquire(), timeout=timeout)
            except TimeoutError:
                logger.warning("Timed out waiting for %s lock on %s", self.name, key)
                raise
        try:
            yield
        finally:
            lock.release()

    def __len__(self) -> int:
        return len(self._locks)


_keyed_locks: dict[str, KeyedLock] = {}


def get_keyed_lock(name: str) -> KeyedLock:
    """Get or create the named lock registry."""
    if name not in _keyed_locks:
        _keyed_locks[name] = KeyedLock(name)
    return _keyed_locks[name]
