"""Per-parent advisory locks serialising shifts that touch the same items."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import AsyncIterator, Dict, Iterable, List


LOGGER = logging.getLogger(__name__)


class ParentLockRegistry:
    """Hand out one ``asyncio.Lock`` per parent id.

    Locks are always taken in ascending id order so two shifts over
    overlapping parent sets cannot deadlock. A lock is dropped once no
    coroutine holds or waits for it.
    """

    def __init__(self) -> None:
        self._locks: Dict[int, asyncio.Lock] = {}
        self._claims: Dict[int, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    def _claim(self, parent_id: int) -> asyncio.Lock:
        lock = self._locks.get(parent_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[parent_id] = lock
        self._claims[parent_id] = self._claims.get(parent_id, 0) + 1
        return lock

    def _unclaim(self, parent_id: int) -> None:
        remaining = self._claims[parent_id] - 1
        if remaining:
            self._claims[parent_id] = remaining
            return
        del self._claims[parent_id]
        del self._locks[parent_id]

    def locked(self, parent_id: int) -> bool:
        lock = self._locks.get(parent_id)
        return lock is not None and lock.locked()

    @contextlib.asynccontextmanager
    async def hold(self, parent_ids: Iterable[int]) -> AsyncIterator[List[int]]:
        ordered = sorted(set(parent_ids))
        locks = [self._claim(parent_id) for parent_id in ordered]
        acquired: List[asyncio.Lock] = []
        try:
            for parent_id, lock in zip(ordered, locks):
                if lock.locked():
                    LOGGER.debug("Waiting for in-flight shift on item %s", parent_id)
                await lock.acquire()
                acquired.append(lock)
            yield ordered
        finally:
            for lock in reversed(acquired):
                lock.release()
            for parent_id in ordered:
                self._unclaim(parent_id)


__all__ = ["ParentLockRegistry"]
