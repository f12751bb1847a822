"""
Source poller - fetches status payloads and records changes.

One asyncio task per source: polls for a source never overlap, and a slow
source never delays the others. Each poll fetches, fingerprints, and
compares with the stored fingerprint; only a change is written (snapshot
upsert + history append in one transaction) and emitted.

Features:
- Independent per-source schedules
- Leadership re-checked before every write
- Fetch and storage failures absorbed per poll
- Graceful shutdown (in-flight fetches run to completion or timeout)
"""

import asyncio
import time
from collections.abc import Callable
from typing import Any

import structlog

from devops_insights.observability.metrics import get_metrics
from devops_insights.observability.tracing import get_tracer, traced
from devops_insights.services.config import PollerConfig
from devops_insights.sources.fetchers import FetchError, StatusFetcher
from devops_insights.sources.schemas import ChangeEvent, Source, compute_fingerprint
from devops_insights.storage.database import STORAGE_ERRORS
from devops_insights.storage.repository import MetricRepository

logger = structlog.get_logger(__name__)

ChangeSink = Callable[[ChangeEvent], Any]


class SourcePoller:
    """
    Polls every configured source on its own interval.

    Usage:
        poller = SourcePoller(fetcher, repository, sources)
        await poller.start()
        ...
        await poller.stop()
    """

    def __init__(
        self,
        fetcher: StatusFetcher,
        repository: MetricRepository,
        sources: list[Source] | None = None,
        is_leader: Callable[[], bool] | None = None,
        change_sink: ChangeSink | None = None,
        config: PollerConfig | None = None,
    ):
        """
        Initialize the poller.

        Args:
            fetcher: Produces the payload for a source
            repository: Metric Store
            sources: Sources polled by start() when none are passed
            is_leader: Checked before every write; None means always allowed
            change_sink: Receives each ChangeEvent after a successful write
                (direct-emit mode only)
            config: Poller config (or load from environment)
        """
        self._fetcher = fetcher
        self._repo = repository
        self._sources = list(sources or [])
        self._is_leader = is_leader
        self._change_sink = change_sink
        self._config = config or PollerConfig()
        self._metrics = get_metrics()
        self._tracer = get_tracer(__name__)

        self._tasks: dict[str, asyncio.Task] = {}
        self._stop_event = asyncio.Event()
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    @property
    def sources(self) -> list[Source]:
        return list(self._sources)

    def set_change_sink(self, sink: ChangeSink | None) -> None:
        self._change_sink = sink

    async def start(self, sources: list[Source] | None = None) -> None:
        """Spawn one polling task per source and return immediately."""
        if self._running:
            return

        if sources is not None:
            self._sources = list(sources)

        self._stop_event = asyncio.Event()
        self._running = True
        self._tasks = {
            source.key: asyncio.create_task(
                self._run_source(source), name=f"poll_{source.key}",
            )
            for source in self._sources
        }
        logger.info(
            "Source poller started",
            sources=[s.region for s in self._sources],
            fetcher=self._fetcher.name,
        )

    async def stop(self) -> None:
        """
        Signal every per-source task to exit at its next wait.

        In-flight polls get ``stop_timeout_seconds`` to finish (fetches are
        bounded by their own timeout); stragglers are then cancelled.
        """
        if not self._running:
            return

        self._running = False
        self._stop_event.set()

        tasks = list(self._tasks.values())
        self._tasks = {}
        if tasks:
            _, pending = await asyncio.wait(tasks, timeout=self._config.stop_timeout_seconds)
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
                logger.warning("Cancelled polls that outlived shutdown", count=len(pending))

        logger.info("Source poller stopped")

    async def _run_source(self, source: Source) -> None:
        """Poll one source until stopped; polls never overlap."""
        first = True
        while not self._stop_event.is_set():
            if not first or self._config.initial_poll:
                if not self._leader_ok():
                    logger.info("Leadership lost, stopping poll loop", region=source.region)
                    return
                await self.poll_once(source)
            first = False

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=source.interval_seconds)
            except asyncio.TimeoutError:
                pass

    def _leader_ok(self) -> bool:
        return self._is_leader is None or self._is_leader()

    async def poll_once(self, source: Source) -> ChangeEvent | None:
        """
        Fetch one source and record it if it changed.

        Returns:
            The emitted ChangeEvent, or None for unchanged / failed / skipped
        """
        start = time.perf_counter()
        log = logger.bind(provider=source.provider, region=source.region)

        with traced(
            self._tracer,
            "poller.poll_once",
            {"provider": source.provider, "region": source.region},
        ) as span:
            try:
                payload = await self._fetcher.fetch(source)
            except FetchError as e:
                log.warning("Fetch failed", error=str(e), status_code=e.status_code)
                self._record(source, "fetch_error", start)
                return None

            fingerprint = compute_fingerprint(payload)

            try:
                stored = await self._repo.get_latest_fingerprint(source)
                if stored == fingerprint:
                    self._record(source, "unchanged", start)
                    return None

                if not self._leader_ok():
                    log.warning("Not leader, skipping write")
                    self._record(source, "skipped", start)
                    return None

                await self._repo.record_change(source, payload, fingerprint)
            except STORAGE_ERRORS as e:
                log.error("Storage write failed", error=str(e))
                self._record(source, "storage_error", start)
                return None

            span.set_attribute("changed", True)
            event = ChangeEvent(provider=source.provider, source=source.region, payload=payload)
            self._record(source, "changed", start)
            log.info("Source changed", fingerprint=fingerprint[:12], first=stored is None)

            if self._change_sink is not None:
                self._change_sink(event)

            return event

    async def run_once(self, sources: list[Source] | None = None) -> dict[str, ChangeEvent | None]:
        """Poll every source once, concurrently. Returns results keyed by region."""
        targets = list(sources) if sources is not None else self._sources
        results = await asyncio.gather(*(self.poll_once(s) for s in targets))
        return {s.region: r for s, r in zip(targets, results)}

    def _record(self, source: Source, outcome: str, start: float) -> None:
        self._metrics.record_poll(source.region, outcome, latency=time.perf_counter() - start)
