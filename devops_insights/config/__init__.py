"""Environment-driven configuration."""

from devops_insights.config.settings import Settings, get_settings

__all__ = ["Settings", "get_settings"]
