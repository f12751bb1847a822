"""
Health check endpoint.
"""

import structlog
from fastapi import APIRouter, Depends

from devops_insights.api.dependencies import get_runtime
from devops_insights.api.models import HealthResponse
from devops_insights.services.runtime import PipelineRuntime

router = APIRouter()
logger = structlog.get_logger(__name__)


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Database, Redis, leadership and notifier status for this process.",
)
async def health_check(
    runtime: PipelineRuntime = Depends(get_runtime),
) -> HealthResponse:
    status = await runtime.health()
    if status["status"] != "healthy":
        logger.warning("Health check degraded", **status)
    return HealthResponse(**status)
