"""Long-running services: the source poller and the process runtime."""

from devops_insights.services.config import PollerConfig
from devops_insights.services.poller import SourcePoller
from devops_insights.services.runtime import PipelineRuntime

__all__ = ["PipelineRuntime", "PollerConfig", "SourcePoller"]
