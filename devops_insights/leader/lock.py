"""Redis lease primitive for leader election.

A lease, not a lock: ``SET key holder NX PX ttl`` grants it, the holder must
renew before the TTL elapses, and a crashed holder forfeits it by expiry
without any cooperation. Renew and release are compare-and-act Lua scripts
so a stale process can never extend or delete a lease it no longer owns.
"""

from __future__ import annotations

import os
import secrets
import socket
from typing import TYPE_CHECKING

from redis.exceptions import RedisError

if TYPE_CHECKING:
    import redis.asyncio as aioredis

# Errors that mean "backend unreachable" rather than "lease refused".
LEASE_BACKEND_ERRORS: tuple[type[BaseException], ...] = (
    RedisError,
    OSError,
    TimeoutError,
)

# KEYS[1]: lease key, ARGV[1]: expected holder, ARGV[2]: ttl (ms)
# Returns 1 if the TTL was extended, 0 if the caller is not the holder.
RENEW_IF_HOLDER = (
    "if redis.call('GET', KEYS[1]) == ARGV[1] then\n"
    "    return redis.call('PEXPIRE', KEYS[1], tonumber(ARGV[2]))\n"
    "end\n"
    "return 0\n"
)

# KEYS[1]: lease key, ARGV[1]: expected holder
# Returns 1 if deleted, 0 if the caller is not the holder.
RELEASE_IF_HOLDER = (
    "if redis.call('GET', KEYS[1]) == ARGV[1] then\n"
    "    return redis.call('DEL', KEYS[1])\n"
    "end\n"
    "return 0\n"
)


def make_holder_id() -> str:
    """Unique identity for this process: ``host:pid:random``."""
    return f"{socket.gethostname()}:{os.getpid()}:{secrets.token_hex(6)}"


def _ttl_ms(ttl_seconds: float) -> int:
    return max(1, int(ttl_seconds * 1000))


class LeaderLock:
    """Stateless lease operations over an async Redis client.

    Backend failures propagate (see ``LEASE_BACKEND_ERRORS``); callers
    decide whether to retry. ``LeaderElection`` is the stateful wrapper
    that does.
    """

    def __init__(self, redis_client: aioredis.Redis) -> None:
        self._redis = redis_client

    async def try_acquire(self, key: str, holder_id: str, ttl_seconds: float) -> bool:
        """Claim the lease if nobody holds it (or the previous lease expired).

        Returns:
            True if ``holder_id`` now holds the lease.
        """
        result = await self._redis.set(key, holder_id, nx=True, px=_ttl_ms(ttl_seconds))
        return bool(result)

    async def renew(self, key: str, holder_id: str, ttl_seconds: float) -> bool:
        """Extend the lease TTL if ``holder_id`` still holds it.

        Returns:
            True if renewed, False if the lease is gone or held by another.
        """
        result = await self._redis.eval(
            RENEW_IF_HOLDER, 1, key, holder_id, str(_ttl_ms(ttl_seconds)),
        )
        return int(result or 0) == 1

    async def release(self, key: str, holder_id: str) -> None:
        """Delete the lease if ``holder_id`` holds it; no-op otherwise."""
        await self._redis.eval(RELEASE_IF_HOLDER, 1, key, holder_id)

    async def current_holder(self, key: str) -> str | None:
        """Return the current holder identity, if any (diagnostics only)."""
        value = await self._redis.get(key)
        if isinstance(value, bytes):
            value = value.decode("utf-8")
        return value
