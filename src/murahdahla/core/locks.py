"""Per-group mutual exclusion.

Commands for different groups run concurrently; commands for the same
group (start, stop, submit, corrections) are serialized so a stop-then-
start or two submissions from one runner cannot interleave.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager


class GroupLocks:
    """A keyed map of ``asyncio.Lock``."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}

    def lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        async with self.lock_for(key):
            yield

    def discard(self, key: str) -> None:
        """Forget a key once its group is gone. A held lock is kept."""
        lock = self._locks.get(key)
        if lock is not None and not lock.locked():
            del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)
