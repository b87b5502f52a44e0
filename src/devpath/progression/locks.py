"""Per-user exclusivity scopes for the orchestrator.

Different users never share a lock. ``LocalUserLocks`` is enough for a single
process; ``RedisUserLocks`` serializes a user across processes.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Protocol

from redis.exceptions import LockError

from devpath.progression.errors import StoreConflict

logger = logging.getLogger(__name__)


class UserLockProvider(Protocol):
    def hold(self, user_id: int) -> AsyncIterator[None]: ...


class LocalUserLocks:
    """asyncio locks keyed by user id, dropped once nobody waits on them."""

    def __init__(self) -> None:
        self._locks: dict[int, asyncio.Lock] = {}
        self._refs: dict[int, int] = {}

    @asynccontextmanager
    async def hold(self, user_id: int) -> AsyncIterator[None]:
        lock = self._locks.setdefault(user_id, asyncio.Lock())
        self._refs[user_id] = self._refs.get(user_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._refs[user_id] -= 1
            if self._refs[user_id] == 0:
                del self._refs[user_id]
                del self._locks[user_id]

    def __len__(self) -> int:
        return len(self._locks)


class RedisUserLocks:
    """redis-py distributed locks under ``progression:lock:{user_id}``."""

    KEY_PREFIX = "progression:lock"

    def __init__(self, redis: object, timeout: float = 10.0, blocking_timeout: float = 5.0) -> None:
        self.redis = redis
        self.timeout = timeout
        self.blocking_timeout = blocking_timeout

    def key(self, user_id: int) -> str:
        return f"{self.KEY_PREFIX}:{user_id}"

    @asynccontextmanager
    async def hold(self, user_id: int) -> AsyncIterator[None]:
        lock = self.redis.lock(  # type: ignore[union-attr]
            self.key(user_id),
            timeout=self.timeout,
            blocking_timeout=self.blocking_timeout,
        )
        acquired = await lock.acquire()
        if not acquired:
            raise StoreConflict(
                f"Timed out waiting for progression lock of user {user_id}",
                user_id=user_id,
            )
        try:
            yield
        finally:
            try:
                await lock.release()
            except LockError:
                # Lock expired before release; the transaction itself already finished
                logger.warning("Progression lock for user %s expired before release", user_id, exc_info=True)
