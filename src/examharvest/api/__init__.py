"""HTTP API - live harvest stream and health check."""

from .app import ScrapeRequest, create_app

__all__ = [
    "ScrapeRequest",
    "create_app",
]
