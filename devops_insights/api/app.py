"""
FastAPI application factory.

The app is a thin shell over ``PipelineRuntime``: REST reads and the
``/ws/metrics`` endpoint both go through the runtime's gateway. The
runtime is built in the lifespan unless ``create_app(runtime=...)`` was
given one, in which case the caller starts and stops it.
"""

import time
import uuid
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from devops_insights import __version__
from devops_insights.api.routes import health, metrics, ws_metrics
from devops_insights.config.settings import Settings, get_settings
from devops_insights.gateway.errors import GatewayError, SnapshotNotFoundError
from devops_insights.observability.logging import setup_logging
from devops_insights.observability.tracing import get_tracer, setup_tracing, traced
from devops_insights.services.runtime import PipelineRuntime
from devops_insights.sources.registry import InvalidRegionError

logger = structlog.get_logger(__name__)

REQUEST_ID_HEADERS = ("X-Request-ID", "X-Correlation-ID")


def _init_observability(settings: Settings) -> None:
    setup_logging()
    if settings.tracing_enabled:
        setup_tracing(
            service_name=settings.otel_service_name,
            otlp_endpoint=settings.otel_exporter_otlp_endpoint,
        )


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    _init_observability(settings)
    logger.info("DevOps Insights API starting up", provider=settings.provider)

    owns_runtime = app.state.runtime is None
    if owns_runtime:
        app.state.runtime = PipelineRuntime(settings, run_poller=settings.run_poller)
        await app.state.runtime.start()

    try:
        yield
    finally:
        logger.info("DevOps Insights API shutting down")
        if owns_runtime:
            await app.state.runtime.stop()
            app.state.runtime = None


def _client_error(status_code: int, exc: Exception) -> JSONResponse:
    content: dict = {"detail": str(exc)}
    if isinstance(exc, InvalidRegionError):
        content["allowed"] = exc.allowed
    return JSONResponse(status_code=status_code, content=content)


def create_app(runtime: PipelineRuntime | None = None) -> FastAPI:
    """
    Build the API.

    Args:
        runtime: Pre-built runtime (tests, embedding); built at startup if None
    """
    settings = get_settings()

    app = FastAPI(
        title="DevOps Insights API",
        description=(
            "Latest status per region of an external DevOps API, its change "
            "history, and live per-region updates over `/ws/metrics`."
        ),
        version=__version__,
        lifespan=lifespan,
        openapi_tags=[
            {"name": "health", "description": "Service health checks"},
            {"name": "metrics", "description": "Latest snapshots and change history"},
            {"name": "websocket", "description": "Real-time per-region updates"},
        ],
    )
    app.state.runtime = runtime

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[o.strip() for o in settings.cors_origins.split(",") if o.strip()],
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=["GET", "OPTIONS"],
        allow_headers=["*"],
    )

    tracer = get_tracer("devops_insights.api")

    @app.middleware("http")
    async def request_context(request: Request, call_next):
        request_id = next(
            (request.headers[h] for h in REQUEST_ID_HEADERS if h in request.headers),
            None,
        ) or str(uuid.uuid4())
        structlog.contextvars.bind_contextvars(request_id=request_id)
        start = time.perf_counter()
        try:
            with traced(
                tracer,
                f"{request.method} {request.url.path}",
                {"http.method": request.method, "http.route": request.url.path},
            ) as span:
                response = await call_next(request)
                span.set_attribute("http.status_code", response.status_code)

            response.headers["X-Request-ID"] = request_id
            logger.info(
                "HTTP request",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=round((time.perf_counter() - start) * 1000, 2),
            )
            return response
        finally:
            structlog.contextvars.clear_contextvars()

    @app.exception_handler(InvalidRegionError)
    async def invalid_region_handler(request: Request, exc: InvalidRegionError):
        return _client_error(422, exc)

    @app.exception_handler(GatewayError)
    async def gateway_error_handler(request: Request, exc: GatewayError):
        status = 404 if isinstance(exc, SnapshotNotFoundError) else 422
        return _client_error(status, exc)

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.error("Unhandled exception", path=request.url.path, exc_info=exc)
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error", "error_type": "internal"},
        )

    app.include_router(health.router, tags=["health"])
    app.include_router(metrics.router, tags=["metrics"])
    app.include_router(ws_metrics.router, tags=["websocket"])

    @app.get("/", include_in_schema=False)
    async def root():
        return {"service": "DevOps Insights API", "version": __version__, "docs": "/docs"}

    return app
