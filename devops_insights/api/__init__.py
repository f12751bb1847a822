"""FastAPI application: REST snapshot/history endpoints and ``/ws/metrics``."""
