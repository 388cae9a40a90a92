"""
Per-user critical sections.

reconcile, create_key and delete_key read shadow records and then write them
back. Serializing them per user closes the read-then-write race inside one
process (two creates both passing the ceiling check). Separate worker
processes still converge through the next reconciliation pass.
"""

import asyncio
import weakref
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager


class UserLockRegistry:
    """Hands out one asyncio.Lock per user_id, dropped once nobody holds it."""

    def __init__(self) -> None:
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def lock_for(self, user_id: str) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[user_id] = lock
        return lock

    @asynccontextmanager
    async def hold(self, user_id: str) -> AsyncIterator[None]:
        """
        Hold the user's lock for the duration of the block.

        Usage:
            async with locks.hold(user_id):
                ...
        """
        lock = self.lock_for(user_id)
        async with lock:
            yield

    def __len__(self) -> int:
        return len(self._locks)


# Process-wide registry shared by all request handlers
user_locks = UserLockRegistry()
