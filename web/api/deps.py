"""
API Dependencies

Shared services for API routers, created once per process.
"""

from typing import Optional

from sitedesk.config import load_config
from sitedesk.jobs import JobRegistry, create_registry
from sitedesk.platform import PlatformClient
from sitedesk.sites import SiteStore

# Global service instances
_sites: Optional[SiteStore] = None
_client: Optional[PlatformClient] = None
_registry: Optional[JobRegistry] = None


def init_services(config: Optional[dict] = None):
    """Initialize services on startup."""
    global _sites, _client, _registry
    config = config or load_config()
    _sites = SiteStore(config.get("sites", {}).get("path", "config/sites.yaml"))
    _client = PlatformClient.from_config(config, _sites)
    _registry = create_registry(_client, config)


async def close_services():
    """Stop running jobs and close the HTTP client on shutdown."""
    global _sites, _client, _registry
    if _registry:
        await _registry.shutdown()
    if _client:
        await _client.aclose()
    _sites = _client = _registry = None


def _ensure_services():
    if _registry is None:
        init_services()


def get_sites() -> SiteStore:
    """Get site store instance."""
    _ensure_services()
    return _sites


def get_client() -> PlatformClient:
    """Get platform client instance."""
    _ensure_services()
    return _client


def get_registry() -> JobRegistry:
    """Get job registry instance."""
    _ensure_services()
    return _registry
