import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Hashable
from weakref import WeakValueDictionary


class KeyedLocks:
    """asyncio locks created on demand per key and dropped once unused."""

    def __init__(self) -> None:
        self._locks: "WeakValueDictionary[Hashable, asyncio.Lock]" = WeakValueDictionary()

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        async with lock:
            yield


def pair_key(user_a: str, user_b: str) -> tuple:
    return tuple(sorted((user_a, user_b)))
