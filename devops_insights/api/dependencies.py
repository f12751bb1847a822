"""
Dependency injection for FastAPI endpoints.

Every component lives on the ``PipelineRuntime`` stored at
``app.state.runtime``; these helpers only look it up.
"""

from fastapi import HTTPException, Request

from devops_insights.gateway.gateway import SubscriptionGateway
from devops_insights.services.runtime import PipelineRuntime


def get_runtime(request: Request) -> PipelineRuntime:
    """Get the process runtime, 503 if the app has not finished starting."""
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(status_code=503, detail="Service is starting")
    return runtime


def get_gateway(request: Request) -> SubscriptionGateway:
    return get_runtime(request).gateway
