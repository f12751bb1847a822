"""Source poller configuration.

All settings can be overridden via ``POLLER_*`` environment variables.
Per-source intervals and the fetch timeout come from the main ``Settings``.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class PollerConfig(BaseSettings):
    """Scheduling knobs for the source poller."""

    model_config = SettingsConfigDict(
        env_prefix="POLLER_",
        case_sensitive=False,
        extra="ignore",
    )

    stop_timeout_seconds: float = Field(
        default=10.0,
        gt=0.0,
        description="How long stop() waits for in-flight polls before cancelling",
    )
    max_retries: int = Field(
        default=0,
        ge=0,
        le=5,
        description="HTTP retries inside one poll (the next poll is the usual retry)",
    )
    initial_poll: bool = Field(
        default=True,
        description="Poll every source immediately on start instead of after one interval",
    )
