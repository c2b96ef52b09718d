"""Keyed asyncio locks used to serialize work on one hotel or one booking"""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Dict, Hashable, Optional

from domain.exceptions import ConcurrencyConflict

logger = logging.getLogger(__name__)


class KeyedLocks:
    """Lazily created lock per key with bounded acquisition time.

    A key's lock is dropped once nobody holds it or waits for it, so the
    registry only ever contains keys with work in flight.
    """

    def __init__(self, timeout: float = 5.0):
        self.timeout = timeout
        self._locks: Dict[Hashable, asyncio.Lock] = {}
        self._users: Dict[Hashable, int] = {}

    def _lock_for(self, key: Hashable) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        self._users[key] = self._users.get(key, 0) + 1
        return lock

    def _forget(self, key: Hashable) -> None:
        remaining = self._users[key] - 1
        if remaining:
            self._users[key] = remaining
        else:
            del self._users[key]
            del self._locks[key]

    async def acquire(self, key: Hashable, timeout: Optional[float] = None) -> None:
        lock = self._lock_for(key)
        try:
            await asyncio.wait_for(lock.acquire(), timeout if timeout is not None else self.timeout)
        except asyncio.TimeoutError:
            self._forget(key)
            logger.warning("Timed out waiting for lock %s", key)
            raise ConcurrencyConflict(f"Timed out waiting for lock on {key}")
        except asyncio.CancelledError:
            self._forget(key)
            raise

    def release(self, key: Hashable) -> None:
        self._locks[key].release()
        self._forget(key)

    @asynccontextmanager
    async def hold(self, key: Hashable, timeout: Optional[float] = None):
        await self.acquire(key, timeout)
        try:
            yield
        finally:
            self.release(key)

    def is_locked(self, key: Hashable) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)
