"""Change notifier configuration.

All settings can be overridden via ``NOTIFIER_*`` environment variables.
The strategy itself (``CHANGE_FEED_MODE``) lives on the main ``Settings``.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class NotifierConfig(BaseSettings):
    """Queueing and pub/sub settings for change events."""

    model_config = SettingsConfigDict(
        env_prefix="NOTIFIER_",
        case_sensitive=False,
        extra="ignore",
    )

    queue_max_size: int = Field(
        default=1000,
        ge=1,
        description="Pending events held before new ones are dropped",
    )
    updates_channel: str = Field(
        default="metrics:updates",
        description="Redis pub/sub channel for cross-replica direct-emit fan-out",
    )
