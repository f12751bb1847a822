"""
Structured logging for the poller, notifier and gateway.

structlog loggers and plain stdlib loggers (the gateway and storage layers
use ``logging.getLogger``) are rendered by the same processor chain, so
every line carries a timestamp, level and logger name and, when tracing is
on, the active trace/span ids. Production renders JSON, development renders
colored console output.
"""

import logging
import sys

import structlog
from structlog.types import Processor

from devops_insights.config.settings import get_settings

_NOISY_LOGGERS = ("httpx", "httpcore", "asyncio", "uvicorn.access")

_handler: logging.Handler | None = None


def _shared_processors(with_trace_ids: bool) -> list[Processor]:
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.ExtraAdder(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]
    if with_trace_ids:
        from devops_insights.observability.tracing import add_trace_context

        processors.append(add_trace_context)
    return processors


def setup_logging(level: str | None = None, json_logs: bool | None = None) -> None:
    """
    Route structlog and stdlib logging through one stdout handler.

    Args:
        level: Log level name (default: LOG_LEVEL)
        json_logs: Force JSON output (default: only in production)

    Usage:
        setup_logging()
        logger = structlog.get_logger(__name__)
        logger.info("Source changed", provider="acme", region="us-east")
    """
    global _handler

    settings = get_settings()
    level = level or settings.log_level
    json_logs = settings.is_production if json_logs is None else json_logs

    shared = _shared_processors(settings.tracing_enabled)

    structlog.configure(
        processors=shared + [
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    renderer: Processor = (
        structlog.processors.JSONRenderer()
        if json_logs
        else structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())
    )
    final: list[Processor] = [structlog.stdlib.ProcessorFormatter.remove_processors_meta]
    if json_logs:
        final.append(structlog.processors.format_exc_info)
    final.append(renderer)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared,
            processors=final,
        )
    )

    root = logging.getLogger()
    if _handler is not None:
        root.removeHandler(_handler)
    _handler = handler
    root.addHandler(handler)
    root.setLevel(level.upper())

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
