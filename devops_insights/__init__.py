"""DevOps Insights - region status polling and real-time metrics distribution."""

__version__ = "0.1.0"
