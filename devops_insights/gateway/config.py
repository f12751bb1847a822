"""Subscription gateway configuration.

All settings can be overridden via ``GATEWAY_*`` environment variables.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class GatewayConfig(BaseSettings):
    """WebSocket limits for the subscription gateway."""

    model_config = SettingsConfigDict(
        env_prefix="GATEWAY_",
        case_sensitive=False,
        extra="ignore",
    )

    max_connections: int = Field(
        default=500,
        ge=1,
        description="Connections beyond this are closed with code 1008",
    )
    heartbeat_interval: int = Field(
        default=30,
        ge=1,
        description="Seconds between heartbeat messages to every client",
    )
    max_message_bytes: int = Field(
        default=16_384,
        ge=256,
        description="Client messages larger than this are rejected",
    )
