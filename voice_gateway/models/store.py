"""
Keyed state shared across call sessions.

The pending-callback map and the incomplete-record store are the only state
sessions share, and both are keyed by phone number. ``KeyedStore`` exposes
atomic get/set/delete plus a per-key lock for read-modify-write sequences, so
updates for one number never block or corrupt entries for another. The
in-memory implementation backs tests and single-process deployments; a
distributed store can implement the same interface.
"""

import asyncio
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Generic, List, Optional, TypeVar

V = TypeVar("V")


class KeyedStore(ABC, Generic[V]):
    """Abstract atomic key-value store."""

    @abstractmethod
    async def get(self, key: str) -> Optional[V]:
        ...

    @abstractmethod
    async def set(self, key: str, value: V) -> None:
        ...

    @abstractmethod
    async def delete(self, key: str) -> Optional[V]:
        """Remove the key and return its previous value, if any."""

    @abstractmethod
    def lock(self, key: str) -> Any:
        """Async context manager serialising compound updates to one key."""

    @abstractmethod
    async def keys(self) -> List[str]:
        ...


class InMemoryKeyedStore(KeyedStore[V]):
    """Dictionary-backed store with one ``asyncio.Lock`` per key."""

    def __init__(self):
        self._data: Dict[str, V] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}

    async def get(self, key: str) -> Optional[V]:
        return self._data.get(key)

    async def set(self, key: str, value: V) -> None:
        self._data[key] = value

    async def delete(self, key: str) -> Optional[V]:
        value = self._data.pop(key, None)
        self._discard_idle_lock(key)
        return value

    @asynccontextmanager
    async def lock(self, key: str) -> AsyncIterator[None]:
        key_lock = self._locks.setdefault(key, asyncio.Lock())
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with key_lock:
                yield
        finally:
            self._lock_users[key] -= 1
            if not self._lock_users[key]:
                del self._lock_users[key]
            self._discard_idle_lock(key)

    def _discard_idle_lock(self, key: str) -> None:
        # Keys with a stored value or a holder/waiter keep their lock
        if key not in self._data and key not in self._lock_users:
            self._locks.pop(key, None)

    async def keys(self) -> List[str]:
        return list(self._data)

    def __len__(self) -> int:
        return len(self._data)
