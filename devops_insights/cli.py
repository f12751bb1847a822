"""
Command-line interface for devops-insights.

Provides commands to run the API server and the poller, initialize the
database, and run diagnostic checks.

Usage:
    devops-insights serve      # API + WebSocket gateway (+ poller)
    devops-insights poll       # Poller only (competes for the lease)
    devops-insights poll-once  # Poll every source once and exit
    devops-insights init-db    # Initialize database
    devops-insights health     # Check dependency health
    devops-insights history    # Print recent changes
"""

import asyncio
import os
import signal
import sys
from datetime import datetime
from typing import Any

import click

from devops_insights.config.settings import get_settings
from devops_insights.observability.logging import setup_logging
from devops_insights.observability.metrics import get_metrics


def _use_fake_data() -> None:
    os.environ["USE_FAKE_DATA"] = "true"
    get_settings.cache_clear()


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
def main(debug: bool) -> None:
    """DevOps Insights - real-time region status distribution."""
    if debug:
        os.environ["LOG_LEVEL"] = "DEBUG"
        get_settings.cache_clear()

    setup_logging()

    settings = get_settings()
    if settings.tracing_enabled:
        from devops_insights.observability.tracing import setup_tracing

        setup_tracing(
            service_name=settings.otel_service_name,
            otlp_endpoint=settings.otel_exporter_otlp_endpoint,
        )


@main.command()
@click.option("--host", default=None, help="API server host")
@click.option("--port", default=None, type=int, help="API server port")
@click.option("--reload", is_flag=True, help="Enable auto-reload (dev only)")
@click.option("--poller/--no-poller", default=True, help="Run the poller in this process")
@click.option("--mock", is_flag=True, help="Poll generated data instead of the real API")
@click.option("--metrics-port", default=None, type=int, help="Metrics server port")
def serve(
    host: str | None,
    port: int | None,
    reload: bool,
    poller: bool,
    mock: bool,
    metrics_port: int | None,
) -> None:
    """Start the API server and WebSocket gateway."""
    import uvicorn

    os.environ["RUN_POLLER"] = "true" if poller else "false"
    if mock:
        _use_fake_data()
    get_settings.cache_clear()

    settings = get_settings()
    host = host or settings.api_host
    port = port or settings.api_port
    metrics_port = metrics_port or settings.metrics_port

    get_metrics().start_server(port=metrics_port)

    click.echo(f"Starting API server on {host}:{port} (provider={settings.provider})")
    click.echo(f"Metrics available on http://localhost:{metrics_port}/metrics")
    click.echo(f"WebSocket endpoint: ws://localhost:{port}/ws/metrics")

    uvicorn.run(
        "devops_insights.api.app:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
        log_level="info",
    )


@main.command()
@click.option("--mock", is_flag=True, help="Poll generated data instead of the real API")
@click.option("--metrics/--no-metrics", default=True, help="Enable metrics server")
def poll(mock: bool, metrics: bool) -> None:
    """Run the poller (and notifier) without the API server."""
    from devops_insights.services.runtime import PipelineRuntime

    if mock:
        _use_fake_data()

    async def run():
        runtime = PipelineRuntime()
        stop_event = asyncio.Event()

        if metrics:
            get_metrics().start_server()

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, stop_event.set)

        await runtime.start()
        try:
            await stop_event.wait()
        finally:
            await runtime.stop()

    asyncio.run(run())


@main.command("poll-once")
@click.option("--mock", is_flag=True, help="Poll generated data instead of the real API")
@click.option("--source", "sources", multiple=True, help="Region to poll (can repeat)")
def poll_once(mock: bool, sources: tuple[str, ...]) -> None:
    """Poll every source once, record changes, and print the outcome.

    Writes unconditionally (no leader lease) and emits no events.
    """
    from devops_insights.services.poller import SourcePoller
    from devops_insights.services.runtime import create_fetcher
    from devops_insights.sources.registry import InvalidRegionError, SourceRegistry
    from devops_insights.storage.database import Database
    from devops_insights.storage.repository import MetricRepository

    if mock:
        _use_fake_data()

    settings = get_settings()
    registry = SourceRegistry.from_settings(settings)
    try:
        targets = [registry.get(s) for s in sources] if sources else registry.sources
    except InvalidRegionError as e:
        raise click.BadParameter(str(e), param_hint="--source") from e

    async def run():
        db = Database()
        await db.connect()
        fetcher = create_fetcher(settings)
        try:
            repo = MetricRepository(db)
            await repo.create_tables()
            async with fetcher:
                poller = SourcePoller(fetcher, repo, targets)
                results = await poller.run_once()
        finally:
            await db.close()

        click.echo(f"\nPoll Results ({settings.provider}):")
        click.echo("-" * 40)
        for region, event in results.items():
            if event is None:
                click.echo(f"  {region}: no change")
            else:
                click.echo(click.style(f"  {region}: changed", fg="green"))

    asyncio.run(run())


@main.command("init-db")
@click.option("--with-feed/--without-feed", default=True, help="Install the change feed trigger")
def init_db(with_feed: bool) -> None:
    """Initialize the database schema."""
    from devops_insights.storage.database import Database
    from devops_insights.storage.repository import MetricRepository

    async def run():
        db = Database()
        await db.connect()

        repo = MetricRepository(db)
        await repo.create_tables()
        if with_feed:
            await repo.install_change_feed()

        click.echo("Database initialized successfully")

        await db.close()

    asyncio.run(run())


@main.command()
def health() -> None:
    """Check health of all dependencies."""
    import structlog
    logger = structlog.get_logger()

    async def check():
        settings = get_settings()
        results: dict[str, Any] = {}

        # Check PostgreSQL
        try:
            from devops_insights.storage.database import Database
            db = Database()
            await db.connect()
            results["postgres"] = await db.health_check()
            await db.close()
        except Exception as e:
            results["postgres"] = False
            logger.error("Postgres health check failed", error=str(e))

        # Check Redis and the current lease holder
        if settings.redis_configured:
            from devops_insights.leader.config import LeaderConfig
            from devops_insights.leader.lock import LeaderLock
            from devops_insights.services.runtime import create_redis_client

            client = create_redis_client(settings)
            try:
                results["redis"] = bool(await client.ping())
                key = LeaderConfig().key_for(settings.provider)
                holder = await LeaderLock(client).current_holder(key)
                results["leader"] = holder or "none"
            except Exception as e:
                results["redis"] = False
                logger.error("Redis health check failed", error=str(e))
            finally:
                await client.aclose()

        click.echo("\nHealth Check Results:")
        click.echo("-" * 40)

        all_healthy = True
        for name, status in results.items():
            ok = status is not False
            icon = "✓" if ok else "✗"
            color = "green" if ok else "red"
            click.echo(click.style(f"  {icon} {name}: {status}", fg=color))
            if name in ("redis", "postgres") and not status:
                all_healthy = False

        click.echo("-" * 40)

        if all_healthy:
            click.echo(click.style("All core services healthy!", fg="green"))
            sys.exit(0)
        else:
            click.echo(click.style("Some services unhealthy!", fg="red"))
            sys.exit(1)

    asyncio.run(check())


@main.command()
@click.option("--source", default=None, help="Region filter")
@click.option("--limit", default=10, type=int, help="Maximum entries to show")
@click.option("--from", "from_", default=None, type=click.DateTime(), help="Inclusive lower bound")
@click.option("--to", default=None, type=click.DateTime(), help="Inclusive upper bound")
def history(source: str | None, limit: int, from_: datetime | None, to: datetime | None) -> None:
    """Print recent changes, newest first."""
    from devops_insights.sources.registry import InvalidRegionError, SourceRegistry
    from devops_insights.storage.database import Database
    from devops_insights.storage.repository import MetricRepository

    settings = get_settings()
    region = None
    if source is not None:
        try:
            region = SourceRegistry.from_settings(settings).normalize(source)
        except InvalidRegionError as e:
            raise click.BadParameter(str(e), param_hint="--source") from e

    async def run():
        db = Database()
        await db.connect()
        try:
            repo = MetricRepository(db, max_history_limit=settings.history_max_limit)
            entries = await repo.query_history(
                settings.provider, region=region, from_=from_, to=to, limit=limit,
            )
        except ValueError as e:
            raise click.BadParameter(str(e), param_hint="--from/--to") from e
        finally:
            await db.close()

        if not entries:
            click.echo("No history found")
            return

        for entry in entries:
            click.echo(
                f"{entry.created_at.isoformat()}  {entry.region:<14} "
                f"{entry.fingerprint[:12]}  {len(entry.payload)} keys"
            )

    asyncio.run(run())


if __name__ == "__main__":
    main()
