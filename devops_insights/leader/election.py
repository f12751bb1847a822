"""Leader election loop built on the Redis lease primitive.

Lifecycle:
    1. ``start(on_acquired)``: spawn the retry loop as a background task
    2. acquisition succeeds → ``on_acquired`` runs exactly once, loop renews
    3. renewal refused (or failing past the lease deadline) → leadership is
       lost: ``is_leader()`` turns False, ``lost`` is set, ``on_lost`` runs,
       and the loop exits without retrying
    4. ``stop()``: cancel the loop and release the lease

Loss is only noticed at the next renewal attempt, so a brief dual-polling
window after a partition heals is possible; callers narrow it by checking
``is_leader()`` right before every side effect.
"""

import asyncio
import inspect
import time
from collections.abc import Awaitable, Callable
from typing import Any

import structlog

from devops_insights.leader.backoff import RetryBackoff
from devops_insights.leader.lock import LEASE_BACKEND_ERRORS, LeaderLock, make_holder_id
from devops_insights.observability.metrics import get_metrics

logger = structlog.get_logger(__name__)

Callback = Callable[[], Awaitable[Any] | Any]


async def _invoke(callback: Callback | None) -> None:
    if callback is None:
        return
    result = callback()
    if inspect.isawaitable(result):
        await result


class LeaderElection:
    """Holds (or competes for) one lease key on behalf of one holder.

    Args:
        lock: Lease primitive.
        key: Lease key shared by every contender.
        holder_id: Identity of this contender (generated if omitted).
        ttl_seconds: Lease lifetime.
        renew_interval: Seconds between renewals (default ttl / 2).
        retry_interval: Seconds between acquisition attempts.
        max_backoff: Cap on retry delay while the backend is unreachable.
        on_lost: Called once when held leadership is lost.
        clock: Monotonic clock (injectable for tests).
    """

    def __init__(
        self,
        lock: LeaderLock,
        key: str,
        holder_id: str | None = None,
        ttl_seconds: float = 30.0,
        renew_interval: float | None = None,
        retry_interval: float | None = None,
        max_backoff: float = 60.0,
        on_lost: Callback | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._lock = lock
        self._key = key
        self._holder_id = holder_id or make_holder_id()
        self._ttl = ttl_seconds
        self._renew_interval = renew_interval or ttl_seconds / 2
        self._retry_interval = retry_interval or max(2.0, ttl_seconds / 2)
        self._max_backoff = max_backoff
        self._on_lost = on_lost
        self._clock = clock

        self._leader = False
        self._deadline = 0.0
        self._task: asyncio.Task | None = None
        self.lost = asyncio.Event()

    @property
    def key(self) -> str:
        return self._key

    @property
    def holder_id(self) -> str:
        return self._holder_id

    def is_leader(self) -> bool:
        """True while the lease is held and its local deadline has not passed."""
        return self._leader and self._clock() < self._deadline

    def start(self, on_acquired: Callback) -> asyncio.Task:
        """Run ``retry_acquire_loop`` in a background task."""
        if self._task is not None and not self._task.done():
            return self._task
        self.lost.clear()
        self._task = asyncio.create_task(
            self.retry_acquire_loop(on_acquired),
            name=f"leader-election:{self._key}",
        )
        return self._task

    async def stop(self) -> None:
        """Stop competing and release the lease if held."""
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        was_leader = self._leader
        self._leader = False
        if was_leader:
            get_metrics().set_leader(self._key, False)
            try:
                await self._lock.release(self._key, self._holder_id)
                logger.info("Leader lease released", key=self._key, holder=self._holder_id)
            except LEASE_BACKEND_ERRORS as e:
                logger.warning(
                    "Failed to release leader lease; it will expire",
                    key=self._key,
                    error=str(e),
                )

    async def retry_acquire_loop(
        self,
        on_acquired: Callback,
        poll_interval: float | None = None,
    ) -> None:
        """Acquire the lease (retrying forever), call ``on_acquired``, then renew.

        Never raises for backend errors. Returns when leadership is lost.
        """
        interval = poll_interval or self._retry_interval
        backoff = RetryBackoff(base_delay=interval, max_delay=self._max_backoff)

        while True:
            attempt_started = self._clock()
            try:
                acquired = await self._lock.try_acquire(self._key, self._holder_id, self._ttl)
            except LEASE_BACKEND_ERRORS as e:
                delay = backoff.next_delay()
                logger.warning(
                    "Leader lease backend unavailable",
                    key=self._key,
                    error=str(e),
                    retry_in=round(delay, 2),
                )
                await asyncio.sleep(delay)
                continue

            backoff.reset()
            if acquired:
                self._leader = True
                self._deadline = attempt_started + self._ttl
                break
            await asyncio.sleep(interval)

        get_metrics().set_leader(self._key, True)
        logger.info("Leader lease acquired", key=self._key, holder=self._holder_id)
        await _invoke(on_acquired)
        await self._hold()

    async def _hold(self) -> None:
        """Renew until the lease is refused or expires locally."""
        while self._leader:
            await asyncio.sleep(self._renew_interval)
            attempt_started = self._clock()
            try:
                renewed = await self._lock.renew(self._key, self._holder_id, self._ttl)
            except LEASE_BACKEND_ERRORS as e:
                if self._clock() >= self._deadline:
                    await self._mark_lost("renewal failed past lease deadline")
                    return
                logger.warning("Leader lease renewal failed", key=self._key, error=str(e))
                continue

            if renewed:
                self._deadline = attempt_started + self._ttl
            else:
                await self._mark_lost("lease held by another instance")
                return

    async def _mark_lost(self, reason: str) -> None:
        self._leader = False
        get_metrics().set_leader(self._key, False)
        logger.warning("Leader lease lost", key=self._key, holder=self._holder_id, reason=reason)
        self.lost.set()
        try:
            await _invoke(self._on_lost)
        except Exception:
            logger.exception("Leader on_lost callback failed", key=self._key)
