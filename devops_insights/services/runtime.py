"""
Pipeline runtime - owns every long-lived component of one process.

Constructed once at startup and passed to collaborators (the FastAPI app
keeps it on ``app.state.runtime``); nothing here is a module-level global.

Startup order:
    database → tables → redis (optional) → gateway → notifier → poller
    (the poller starts directly, or after winning the leader lease when
    Redis is configured)

Shutdown order:
    poller → lease release → notifier → gateway → fetcher → redis → database
"""

from typing import Any

import redis.asyncio as redis
import structlog

from devops_insights.config.settings import Settings, get_settings
from devops_insights.gateway.config import GatewayConfig
from devops_insights.gateway.gateway import SubscriptionGateway
from devops_insights.leader.config import LeaderConfig
from devops_insights.leader.election import LeaderElection
from devops_insights.leader.lock import LeaderLock
from devops_insights.notifier.base import ChangeNotifier
from devops_insights.notifier.config import NotifierConfig
from devops_insights.notifier.feed import FeedChangeNotifier
from devops_insights.notifier.publisher import LocalPublisher, RedisPublisher
from devops_insights.notifier.selector import select_notifier
from devops_insights.services.config import PollerConfig
from devops_insights.services.poller import SourcePoller
from devops_insights.sources.fake_data import FakeStatusFetcher
from devops_insights.sources.fetchers import HTTPStatusFetcher, StatusFetcher
from devops_insights.sources.http_client import RetryConfig
from devops_insights.sources.registry import SourceRegistry
from devops_insights.storage.database import Database
from devops_insights.storage.repository import MetricRepository

logger = structlog.get_logger(__name__)


def create_fetcher(settings: Settings, config: PollerConfig | None = None) -> StatusFetcher:
    """Fake data in mock mode, otherwise HTTP with the configured timeout."""
    if settings.use_fake_data:
        return FakeStatusFetcher(window_seconds=settings.poll_interval_seconds)
    config = config or PollerConfig()
    return HTTPStatusFetcher(
        timeout=settings.poll_timeout_seconds,
        retry_config=RetryConfig(max_retries=config.max_retries),
    )


def create_redis_client(settings: Settings) -> redis.Redis | None:
    if not settings.redis_configured:
        return None
    return redis.from_url(
        str(settings.redis_url),
        encoding="utf-8",
        decode_responses=True,
    )


class PipelineRuntime:
    """
    Wires storage, leader election, poller, notifier and gateway together.

    Usage:
        runtime = PipelineRuntime()
        await runtime.start()
        ...
        await runtime.stop()
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        database: Database | None = None,
        repository: MetricRepository | None = None,
        redis_client: redis.Redis | None = None,
        fetcher: StatusFetcher | None = None,
        leader_config: LeaderConfig | None = None,
        gateway_config: GatewayConfig | None = None,
        notifier_config: NotifierConfig | None = None,
        poller_config: PollerConfig | None = None,
        run_poller: bool = True,
    ):
        """
        Initialize the runtime (nothing connects until start()).

        Args:
            settings: Application settings (or load from environment)
            database: Database to use (or create from settings)
            repository: Metric Store (or build one over ``database``)
            redis_client: Redis client (or create when REDIS_URL is set)
            fetcher: Status fetcher (or create from settings)
            leader_config: Lease timings
            gateway_config: WebSocket limits
            notifier_config: Notifier queue settings
            poller_config: Poller scheduling
            run_poller: False for API-only replicas
        """
        self._settings = settings or get_settings()
        self._leader_config = leader_config or LeaderConfig()
        self._gateway_config = gateway_config or GatewayConfig()
        self._notifier_config = notifier_config or NotifierConfig()
        self._run_poller = run_poller

        self.registry = SourceRegistry.from_settings(self._settings)
        self.database = database or Database()
        self.repository = repository or MetricRepository(
            self.database,
            default_history_limit=self._settings.history_default_limit,
            max_history_limit=self._settings.history_max_limit,
        )
        self.redis = redis_client if redis_client is not None else create_redis_client(self._settings)
        poller_config = poller_config or PollerConfig()
        self.fetcher = fetcher or create_fetcher(self._settings, poller_config)

        self.gateway = SubscriptionGateway(
            self.repository,
            self.registry,
            provider=self._settings.provider,
            max_connections=self._gateway_config.max_connections,
            heartbeat_interval=self._gateway_config.heartbeat_interval,
            max_message_bytes=self._gateway_config.max_message_bytes,
            channel=self._notifier_config.updates_channel,
        )
        self.poller = SourcePoller(
            self.fetcher,
            self.repository,
            self.registry.sources,
            is_leader=self.is_leader if self.redis is not None else None,
            config=poller_config,
        )

        self.notifier: ChangeNotifier | None = None
        self.election: LeaderElection | None = None
        self._started = False

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def provider(self) -> str:
        return self._settings.provider

    @property
    def notifier_mode(self) -> str | None:
        return self.notifier.mode if self.notifier is not None else None

    @property
    def leader_key(self) -> str:
        return self._leader_config.key_for(self.provider)

    def is_leader(self) -> bool:
        """True if this process may poll right now."""
        if self.redis is None:
            return self._run_poller
        return self.election is not None and self.election.is_leader()

    async def start(self) -> None:
        """Connect everything and start polling (or competing for the lease)."""
        if self._started:
            return

        await self.database.connect()
        await self.repository.create_tables()
        await self.fetcher.open()

        await self.gateway.start(self.redis)

        local = LocalPublisher(self.gateway.deliver)
        direct = RedisPublisher(self.redis, self._notifier_config.updates_channel) if self.redis else None
        self.notifier = await select_notifier(
            self._settings.change_feed_mode,
            database=self.database,
            repository=self.repository,
            provider=self.provider,
            local_publisher=local,
            direct_publisher=direct,
            queue_size=self._notifier_config.queue_max_size,
        )
        if self.notifier.accepts_direct_events:
            self.poller.set_change_sink(self.notifier.notify)

        self._started = True
        logger.info(
            "Pipeline runtime started",
            provider=self.provider,
            regions=self.registry.regions,
            notifier=self.notifier.mode,
            redis=self.redis is not None,
        )

        if not self._run_poller:
            return
        if self.redis is None:
            await self.poller.start()
        else:
            self._join_election()

    def _join_election(self) -> None:
        self.election = LeaderElection(
            LeaderLock(self.redis),
            self.leader_key,
            ttl_seconds=self._leader_config.ttl_seconds,
            renew_interval=self._leader_config.renew_interval,
            retry_interval=self._leader_config.retry_interval,
            max_backoff=self._leader_config.max_backoff_seconds,
            on_lost=self._on_leadership_lost,
        )
        self.election.start(on_acquired=self._on_leadership_acquired)
        logger.info("Competing for poller leadership", key=self.leader_key)

    async def _on_leadership_acquired(self) -> None:
        await self.poller.start()

    async def _on_leadership_lost(self) -> None:
        await self.poller.stop()
        if self._leader_config.rejoin_on_loss and self._started:
            logger.info("Rejoining poller leader election", key=self.leader_key)
            self._join_election()

    async def stop(self) -> None:
        """Release the lease first, then close storage and network resources."""
        self._started = False

        await self.poller.stop()
        if self.election is not None:
            await self.election.stop()
            self.election = None

        if self.notifier is not None:
            await self.notifier.stop()
        await self.gateway.stop()
        await self.fetcher.close()

        if self.redis is not None:
            await self.redis.aclose()
        await self.database.close()
        logger.info("Pipeline runtime stopped")

    async def health(self) -> dict[str, Any]:
        """Component health for ``/health`` and the CLI."""
        database_ok = await self.database.health_check()

        redis_ok: bool | None = None
        if self.redis is not None:
            try:
                redis_ok = bool(await self.redis.ping())
            except Exception:
                redis_ok = False

        feed_connected: bool | None = None
        if isinstance(self.notifier, FeedChangeNotifier):
            feed_connected = self.notifier.connected

        healthy = database_ok and redis_ok is not False and feed_connected is not False
        return {
            "status": "healthy" if healthy else "degraded",
            "provider": self.provider,
            "database": database_ok,
            "redis": redis_ok,
            "leader": self.is_leader(),
            "polling": self.poller.running,
            "notifier_mode": self.notifier_mode,
            "feed_connected": feed_connected,
            "connections": self.gateway.active_connections,
        }
