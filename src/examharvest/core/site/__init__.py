"""Site adapters driving an authenticated portal session."""

from .base import SelectOption, SiteAdapter
from .playwright_adapter import PlaywrightSiteAdapter

__all__ = [
    "SelectOption",
    "SiteAdapter",
    "PlaywrightSiteAdapter",
]
