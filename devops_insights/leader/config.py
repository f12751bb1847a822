"""Leader election configuration.

All settings can be overridden via ``LEADER_*`` environment variables.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class LeaderConfig(BaseSettings):
    """Lease timing for the single-poller-per-fleet election."""

    model_config = SettingsConfigDict(
        env_prefix="LEADER_",
        case_sensitive=False,
        extra="ignore",
    )

    key_prefix: str = Field(
        default="devops-insights:poller:leader",
        description="Redis key prefix; the provider name is appended",
    )
    ttl_seconds: float = Field(
        default=30.0,
        gt=0.0,
        description="Lease lifetime; bounds the dual-poll window after a crash",
    )
    renew_interval_seconds: float | None = Field(
        default=None,
        gt=0.0,
        description="How often the holder renews (default: ttl / 2)",
    )
    retry_interval_seconds: float | None = Field(
        default=None,
        gt=0.0,
        description="How often a follower retries acquisition (default: max(2, ttl / 2))",
    )
    max_backoff_seconds: float = Field(
        default=60.0,
        gt=0.0,
        description="Upper bound on retry delay while the backend is unreachable",
    )
    rejoin_on_loss: bool = Field(
        default=True,
        description="Re-enter the election after losing the lease",
    )

    def key_for(self, provider: str) -> str:
        return f"{self.key_prefix}:{provider}"

    @property
    def renew_interval(self) -> float:
        return self.renew_interval_seconds or self.ttl_seconds / 2

    @property
    def retry_interval(self) -> float:
        return self.retry_interval_seconds or max(2.0, self.ttl_seconds / 2)
