"""
Metric repository: latest snapshot per source plus append-only history.

Tables:
    - metrics_latest: exactly one row per (api, source), upserted on change
    - metrics_history: every change, never updated or deleted here

The ``metrics_latest`` table carries an ``AFTER INSERT OR UPDATE`` trigger
that issues ``pg_notify`` on ``metrics_latest_changes``; that notification
stream is the change feed consumed by ``FeedChangeNotifier``.
"""

import json
import logging
import time
from datetime import datetime
from typing import Any

import asyncpg

from devops_insights.observability.metrics import get_metrics
from devops_insights.sources.schemas import HistoryEntry, Snapshot, Source, canonical_json
from devops_insights.storage.database import Database

logger = logging.getLogger(__name__)

CHANGE_FEED_CHANNEL = "metrics_latest_changes"

DEFAULT_HISTORY_LIMIT = 100
MAX_HISTORY_LIMIT = 1000

CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS metrics_latest (
    api         TEXT NOT NULL,
    source      TEXT NOT NULL,
    payload     JSONB NOT NULL,
    fingerprint TEXT NOT NULL,
    created_at  TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at  TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    PRIMARY KEY (api, source)
);

CREATE TABLE IF NOT EXISTS metrics_history (
    id          BIGSERIAL PRIMARY KEY,
    api         TEXT NOT NULL,
    source      TEXT NOT NULL,
    payload     JSONB NOT NULL,
    fingerprint TEXT NOT NULL,
    created_at  TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_metrics_history_api_source_created
    ON metrics_history(api, source, created_at DESC);
CREATE INDEX IF NOT EXISTS idx_metrics_history_api_created
    ON metrics_history(api, created_at DESC);
"""

CHANGE_FEED_SQL = f"""
CREATE OR REPLACE FUNCTION notify_metrics_latest_change() RETURNS trigger AS $$
BEGIN
    PERFORM pg_notify(
        '{CHANGE_FEED_CHANNEL}',
        json_build_object('op', TG_OP, 'api', NEW.api, 'source', NEW.source)::text
    );
    RETURN NEW;
END;
$$ LANGUAGE plpgsql;

DROP TRIGGER IF EXISTS metrics_latest_notify ON metrics_latest;
CREATE TRIGGER metrics_latest_notify
    AFTER INSERT OR UPDATE ON metrics_latest
    FOR EACH ROW
    EXECUTE FUNCTION notify_metrics_latest_change();
"""


class MetricRepository:
    """
    Repository for snapshot and history persistence.

    Single-row upserts rely on PostgreSQL's ``ON CONFLICT`` atomicity;
    writes for one source are already serialized by the poller, so no
    additional locking happens here.
    """

    def __init__(
        self,
        database: Database,
        default_history_limit: int = DEFAULT_HISTORY_LIMIT,
        max_history_limit: int = MAX_HISTORY_LIMIT,
    ):
        """
        Initialize repository.

        Args:
            database: Connected Database instance
            default_history_limit: Limit used when a query gives none
            max_history_limit: Hard cap applied to every history query
        """
        self._db = database
        self._default_history_limit = default_history_limit
        self._max_history_limit = max_history_limit

    async def create_tables(self) -> None:
        """Create tables and indexes if they don't exist."""
        await self._db.execute(CREATE_TABLES_SQL)
        logger.info("Metric tables ensured")

    async def install_change_feed(self) -> None:
        """Install the NOTIFY trigger on ``metrics_latest`` (idempotent)."""
        await self._db.execute(CHANGE_FEED_SQL)
        logger.info("Change feed trigger installed on metrics_latest")

    # ── Writes ───────────────────────────────────────────

    async def upsert_latest(
        self,
        source: Source,
        payload: dict[str, Any],
        fingerprint: str,
        conn: asyncpg.Connection | None = None,
    ) -> Snapshot:
        """Insert or overwrite the single latest row for a source."""
        sql = """
            INSERT INTO metrics_latest (api, source, payload, fingerprint)
            VALUES ($1, $2, $3::jsonb, $4)
            ON CONFLICT (api, source) DO UPDATE
                SET payload = EXCLUDED.payload,
                    fingerprint = EXCLUDED.fingerprint,
                    updated_at = NOW()
            RETURNING *
        """
        row = await (conn or self._db).fetchrow(
            sql, source.provider, source.region, canonical_json(payload), fingerprint,
        )
        return _row_to_snapshot(row)

    async def append_history(
        self,
        source: Source,
        payload: dict[str, Any],
        fingerprint: str,
        conn: asyncpg.Connection | None = None,
    ) -> HistoryEntry:
        """Append one immutable history row."""
        sql = """
            INSERT INTO metrics_history (api, source, payload, fingerprint)
            VALUES ($1, $2, $3::jsonb, $4)
            RETURNING *
        """
        row = await (conn or self._db).fetchrow(
            sql, source.provider, source.region, canonical_json(payload), fingerprint,
        )
        return _row_to_history(row)

    async def record_change(
        self,
        source: Source,
        payload: dict[str, Any],
        fingerprint: str,
    ) -> Snapshot:
        """Upsert the snapshot and append history in one transaction.

        Either both rows are written or neither is; the change-feed
        notification fires on commit.
        """
        start = time.perf_counter()
        async with self._db.transaction() as conn:
            snapshot = await self.upsert_latest(source, payload, fingerprint, conn=conn)
            await self.append_history(source, payload, fingerprint, conn=conn)
        get_metrics().storage_latency.labels(operation="record_change").observe(
            time.perf_counter() - start
        )
        return snapshot

    # ── Reads ────────────────────────────────────────────

    async def get_latest_fingerprint(self, source: Source) -> str | None:
        """Fetch only the stored fingerprint for change detection."""
        sql = "SELECT fingerprint FROM metrics_latest WHERE api = $1 AND source = $2"
        return await self._db.fetchval(sql, source.provider, source.region)

    async def get_latest(self, source: Source) -> Snapshot | None:
        """Get the latest snapshot for a source, or None if never polled."""
        return await self.get_latest_by_key(source.provider, source.region)

    async def get_latest_by_key(self, provider: str, region: str) -> Snapshot | None:
        sql = "SELECT * FROM metrics_latest WHERE api = $1 AND source = $2"
        row = await self._db.fetchrow(sql, provider, region)
        if row is None:
            return None
        return _row_to_snapshot(row)

    async def get_all_latest(self, provider: str) -> dict[str, Snapshot]:
        """Get every stored snapshot for a provider, keyed by region."""
        sql = "SELECT * FROM metrics_latest WHERE api = $1 ORDER BY source"
        rows = await self._db.fetch(sql, provider)
        snapshots = [_row_to_snapshot(row) for row in rows]
        return {s.region: s for s in snapshots}

    async def query_history(
        self,
        provider: str,
        *,
        region: str | None = None,
        from_: datetime | None = None,
        to: datetime | None = None,
        limit: int | None = None,
    ) -> list[HistoryEntry]:
        """Query history newest first.

        Args:
            provider: Provider name.
            region: Optional region filter.
            from_: Inclusive lower bound on ``created_at``.
            to: Inclusive upper bound on ``created_at``.
            limit: Maximum entries (default when None), clamped to ``[1, max_history_limit]``.

        Raises:
            ValueError: If ``from_`` is after ``to``.
        """
        if from_ is not None and to is not None and from_ > to:
            raise ValueError("'from' must not be later than 'to'")

        conditions = ["api = $1"]
        params: list[Any] = [provider]
        param_idx = 2

        if region is not None:
            conditions.append(f"source = ${param_idx}")
            params.append(region)
            param_idx += 1

        if from_ is not None:
            conditions.append(f"created_at >= ${param_idx}")
            params.append(from_)
            param_idx += 1

        if to is not None:
            conditions.append(f"created_at <= ${param_idx}")
            params.append(to)
            param_idx += 1

        sql = f"""
            SELECT * FROM metrics_history
            WHERE {" AND ".join(conditions)}
            ORDER BY created_at DESC, id DESC
            LIMIT ${param_idx}
        """
        params.append(self.clamp_limit(limit))

        start = time.perf_counter()
        rows = await self._db.fetch(sql, *params)
        get_metrics().storage_latency.labels(operation="query_history").observe(
            time.perf_counter() - start
        )
        return [_row_to_history(row) for row in rows]

    def clamp_limit(self, limit: int | None) -> int:
        if limit is None:
            return min(self._default_history_limit, self._max_history_limit)
        return max(1, min(int(limit), self._max_history_limit))


def _decode_payload(value: Any) -> dict[str, Any]:
    if isinstance(value, str):
        return json.loads(value)
    return value


def _row_to_snapshot(row: Any) -> Snapshot:
    """Convert an asyncpg Record to a Snapshot."""
    return Snapshot(
        provider=row["api"],
        region=row["source"],
        payload=_decode_payload(row["payload"]),
        fingerprint=row["fingerprint"],
        updated_at=row["updated_at"],
        created_at=row.get("created_at"),
    )


def _row_to_history(row: Any) -> HistoryEntry:
    """Convert an asyncpg Record to a HistoryEntry."""
    return HistoryEntry(
        id=row.get("id"),
        provider=row["api"],
        region=row["source"],
        payload=_decode_payload(row["payload"]),
        fingerprint=row["fingerprint"],
        created_at=row["created_at"],
    )
