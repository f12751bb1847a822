"""
asyncpg pool for the Metric Store.

Pooled connections serve the poller's writes and the gateway/API reads.
The change feed needs one connection that stays checked out for as long as
it LISTENs, so ``connect_dedicated()`` opens it beside the pool. Both kinds
report an ``application_name`` so they can be told apart in
``pg_stat_activity``.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import asyncpg

from devops_insights.config.settings import get_settings

logger = logging.getLogger(__name__)

APPLICATION_NAME = "devops-insights"

# Errors that mean "storage unavailable" for one operation.
STORAGE_ERRORS: tuple[type[BaseException], ...] = (
    asyncpg.PostgresError,
    asyncpg.InterfaceError,
    OSError,
)


class Database:
    """
    Pool lifecycle plus thin query helpers.

    Usage:
        db = Database()
        await db.connect()

        async with db.transaction() as conn:
            await conn.execute("INSERT INTO metrics_history ...")

        await db.close()
    """

    def __init__(
        self,
        database_url: str | None = None,
        min_size: int | None = None,
        max_size: int | None = None,
        command_timeout: float = 30.0,
    ):
        settings = get_settings()

        self._database_url = database_url or str(settings.database_url)
        self._min_size = min_size or settings.db_pool_min_size
        self._max_size = max_size or settings.db_pool_max_size
        self._command_timeout = command_timeout

        self._pool: asyncpg.Pool | None = None

    def _server_settings(self, role: str) -> dict[str, str]:
        return {"application_name": f"{APPLICATION_NAME}:{role}"}

    @property
    def connected(self) -> bool:
        return self._pool is not None

    async def connect(self) -> None:
        """Create the pool. Calling it again while connected does nothing."""
        if self._pool is not None:
            return
        try:
            self._pool = await asyncpg.create_pool(
                self._database_url,
                min_size=self._min_size,
                max_size=self._max_size,
                command_timeout=self._command_timeout,
                server_settings=self._server_settings("pool"),
            )
        except STORAGE_ERRORS as e:
            logger.error("Failed to connect to database: %s", e)
            raise
        logger.info("Database pool ready (size %d-%d)", self._min_size, self._max_size)

    async def close(self) -> None:
        pool, self._pool = self._pool, None
        if pool is not None:
            await pool.close()
            logger.info("Database pool closed")

    @property
    def pool(self) -> asyncpg.Pool:
        if self._pool is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._pool

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[asyncpg.Connection]:
        async with self.pool.acquire() as conn:
            yield conn

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[asyncpg.Connection]:
        """Yield a pooled connection inside a transaction (snapshot + history writes)."""
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                yield conn

    async def connect_dedicated(self, role: str = "listener") -> asyncpg.Connection:
        """
        Open a connection outside the pool; the caller owns and closes it.

        LISTEN notifications go to the session that issued the LISTEN, so a
        pooled connection would stop receiving them once released.
        """
        return await asyncpg.connect(
            self._database_url,
            command_timeout=self._command_timeout,
            server_settings=self._server_settings(role),
        )

    async def execute(self, query: str, *args: Any) -> str:
        async with self.acquire() as conn:
            return await conn.execute(query, *args)

    async def fetch(self, query: str, *args: Any) -> list[asyncpg.Record]:
        async with self.acquire() as conn:
            return await conn.fetch(query, *args)

    async def fetchrow(self, query: str, *args: Any) -> asyncpg.Record | None:
        async with self.acquire() as conn:
            return await conn.fetchrow(query, *args)

    async def fetchval(self, query: str, *args: Any) -> Any:
        async with self.acquire() as conn:
            return await conn.fetchval(query, *args)

    async def health_check(self, timeout: float = 2.0) -> bool:
        """True if a pooled connection answers ``SELECT 1`` within ``timeout``."""
        if self._pool is None:
            return False
        try:
            async with self._pool.acquire(timeout=timeout) as conn:
                result = await conn.fetchval("SELECT 1", timeout=timeout)
        except (TimeoutError, *STORAGE_ERRORS) as e:
            logger.warning("Database health check failed: %s", e)
            return False
        return result == 1
