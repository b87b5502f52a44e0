"""Per-user lock provider tests."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import LockError

from devpath.progression.errors import StoreConflict
from devpath.progression.locks import LocalUserLocks, RedisUserLocks


class TestLocalUserLocks:
    """asyncio locks keyed by user id."""

    @pytest.mark.asyncio
    async def test_same_user_is_serialized(self):
        locks = LocalUserLocks()
        order: list[str] = []

        async def worker(name: str) -> None:
            async with locks.hold(1):
                order.append(f"{name}-enter")
                await asyncio.sleep(0.01)
                order.append(f"{name}-exit")

        await asyncio.gather(worker("a"), worker("b"))
        assert order == ["a-enter", "a-exit", "b-enter", "b-exit"]

    @pytest.mark.asyncio
    async def test_other_user_not_blocked(self):
        locks = LocalUserLocks()
        async with locks.hold(1):
            await asyncio.wait_for(_enter_and_leave(locks, 2), timeout=1)

    @pytest.mark.asyncio
    async def test_locks_released_when_idle(self):
        locks = LocalUserLocks()
        async with locks.hold(1):
            assert len(locks) == 1
        assert len(locks) == 0


async def _enter_and_leave(locks: LocalUserLocks, user_id: int) -> None:
    async with locks.hold(user_id):
        pass


def _redis_with_lock(acquired: bool = True, release_error: Exception | None = None) -> tuple[MagicMock, MagicMock]:
    lock = MagicMock()
    lock.acquire = AsyncMock(return_value=acquired)
    lock.release = AsyncMock(side_effect=release_error)
    redis = MagicMock()
    redis.lock = MagicMock(return_value=lock)
    return redis, lock


class TestRedisUserLocks:
    """redis-py distributed locks (mocked)."""

    @pytest.mark.asyncio
    async def test_acquires_and_releases_per_user_key(self):
        redis, lock = _redis_with_lock()
        locks = RedisUserLocks(redis, timeout=10, blocking_timeout=2)

        async with locks.hold(42):
            pass

        redis.lock.assert_called_once_with("progression:lock:42", timeout=10, blocking_timeout=2)
        lock.acquire.assert_awaited_once()
        lock.release.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_acquire_timeout_is_store_conflict(self):
        redis, lock = _redis_with_lock(acquired=False)
        locks = RedisUserLocks(redis)

        with pytest.raises(StoreConflict):
            async with locks.hold(42):
                pytest.fail("body must not run without the lock")
        lock.release.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_expired_lock_on_release_is_logged(self):
        redis, _ = _redis_with_lock(release_error=LockError("expired"))
        locks = RedisUserLocks(redis)

        async with locks.hold(42):
            pass
