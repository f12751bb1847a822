"""
REST endpoints for snapshots and history.

Same reads as the WebSocket ``get_snapshot`` / ``get_history`` messages,
served by any replica (no leadership required).
"""

from datetime import datetime

from fastapi import APIRouter, Depends, Query

from devops_insights import __version__
from devops_insights.api.dependencies import get_gateway, get_runtime
from devops_insights.api.models import (
    HistoryResponse,
    InfoResponse,
    SnapshotMapResponse,
    SnapshotResponse,
)
from devops_insights.gateway.gateway import SubscriptionGateway
from devops_insights.services.runtime import PipelineRuntime

router = APIRouter(prefix="/api/v1")


@router.get(
    "/metrics",
    response_model=SnapshotMapResponse,
    summary="Latest snapshot for every source",
)
async def get_all_metrics(
    gateway: SubscriptionGateway = Depends(get_gateway),
) -> SnapshotMapResponse:
    return SnapshotMapResponse(**await gateway.get_snapshot())


@router.get(
    "/metrics/history",
    response_model=HistoryResponse,
    summary="Change history, newest first",
)
async def get_metrics_history(
    source: str | None = Query(default=None, description="Region filter"),
    from_: datetime | None = Query(default=None, alias="from", description="Inclusive lower bound"),
    to: datetime | None = Query(default=None, description="Inclusive upper bound"),
    limit: int | None = Query(default=None, ge=1, description="Max entries (clamped)"),
    gateway: SubscriptionGateway = Depends(get_gateway),
) -> HistoryResponse:
    data = await gateway.get_history(source=source, from_=from_, to=to, limit=limit)
    return HistoryResponse(**data)


@router.get(
    "/metrics/{source}",
    response_model=SnapshotResponse,
    summary="Latest snapshot for one source",
)
async def get_source_metrics(
    source: str,
    gateway: SubscriptionGateway = Depends(get_gateway),
) -> SnapshotResponse:
    return SnapshotResponse(**await gateway.get_snapshot(source))


@router.get("/info", response_model=InfoResponse, summary="Service metadata")
async def get_info(
    runtime: PipelineRuntime = Depends(get_runtime),
) -> InfoResponse:
    return InfoResponse(
        service="devops-insights",
        version=__version__,
        provider=runtime.provider,
        regions=runtime.registry.regions,
        notifier_mode=runtime.notifier_mode,
        leader=runtime.is_leader(),
    )
