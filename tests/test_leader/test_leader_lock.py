"""Tests for the Redis lease primitive."""

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from devops_insights.leader.lock import LeaderLock, make_holder_id

KEY = "devops-insights:poller:leader:acme"


@pytest.fixture
def lock(fake_redis):
    return LeaderLock(fake_redis)


class TestTryAcquire:
    @pytest.mark.asyncio
    async def test_first_caller_wins(self, lock):
        assert await lock.try_acquire(KEY, "a", 30) is True
        assert await lock.try_acquire(KEY, "b", 30) is False
        assert await lock.current_holder(KEY) == "a"

    @pytest.mark.asyncio
    async def test_holder_cannot_acquire_twice(self, lock):
        assert await lock.try_acquire(KEY, "a", 30) is True
        assert await lock.try_acquire(KEY, "a", 30) is False

    @pytest.mark.asyncio
    async def test_expired_lease_is_claimable(self, lock, clock):
        await lock.try_acquire(KEY, "a", 30)

        clock.advance(29.9)
        assert await lock.try_acquire(KEY, "b", 30) is False

        clock.advance(0.2)
        assert await lock.try_acquire(KEY, "b", 30) is True
        assert await lock.current_holder(KEY) == "b"

    @pytest.mark.asyncio
    async def test_backend_error_propagates(self, lock, fake_redis):
        fake_redis.fail_with = RedisConnectionError("down")
        with pytest.raises(RedisConnectionError):
            await lock.try_acquire(KEY, "a", 30)


class TestRenew:
    @pytest.mark.asyncio
    async def test_holder_extends_ttl(self, lock, clock):
        await lock.try_acquire(KEY, "a", 30)
        clock.advance(20)

        assert await lock.renew(KEY, "a", 30) is True

        clock.advance(20)
        assert await lock.current_holder(KEY) == "a"

    @pytest.mark.asyncio
    async def test_non_holder_is_refused(self, lock, clock):
        await lock.try_acquire(KEY, "a", 30)
        assert await lock.renew(KEY, "b", 30) is False

        clock.advance(31)
        assert await lock.current_holder(KEY) is None

    @pytest.mark.asyncio
    async def test_renew_after_expiry_fails(self, lock, clock):
        await lock.try_acquire(KEY, "a", 30)
        clock.advance(31)
        assert await lock.renew(KEY, "a", 30) is False


class TestRelease:
    @pytest.mark.asyncio
    async def test_holder_release_frees_key(self, lock):
        await lock.try_acquire(KEY, "a", 30)
        await lock.release(KEY, "a")

        assert await lock.current_holder(KEY) is None
        assert await lock.try_acquire(KEY, "b", 30) is True

    @pytest.mark.asyncio
    async def test_stale_holder_cannot_release(self, lock, clock):
        await lock.try_acquire(KEY, "a", 30)
        clock.advance(31)
        await lock.try_acquire(KEY, "b", 30)

        await lock.release(KEY, "a")

        assert await lock.current_holder(KEY) == "b"


def test_holder_ids_are_unique():
    ids = {make_holder_id() for _ in range(50)}
    assert len(ids) == 50
    assert all(i.count(":") >= 2 for i in ids)
