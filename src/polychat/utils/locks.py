"""
Keyed mutual exclusion.

'KeyedLock' hands out one 'asyncio.Lock' per key (a conversation id) and forgets
the lock once nobody holds or waits on it, so the map does not grow with the
number of conversations ever seen. Callers choose per acquisition whether to
queue behind the current holder or to fail fast with 'ConversationBusyError'.
"""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from polychat.errors import ConversationBusyError


class KeyedLock:
    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    def locked(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, key: str, wait: bool = True) -> AsyncIterator[None]:
        """Hold the lock for 'key' for the duration of the block.

        With 'wait=False' a key that is already held raises 'ConversationBusyError'
        immediately instead of queueing.
        """
        if not wait and self.locked(key):
            raise ConversationBusyError(f"Conversation {key} already has a completion in flight")

        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            await lock.acquire()
            try:
                yield
            finally:
                lock.release()
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]
