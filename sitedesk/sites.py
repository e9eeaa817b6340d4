"""
SiteDesk Site Store

Managed sites and their platform credentials, kept in a YAML file.
"""

import logging
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Optional

import yaml

logger = logging.getLogger(__name__)


class SiteNotFoundError(Exception):
    """Raised when a site id has no stored configuration."""

    def __init__(self, site_id: str):
        super().__init__(f"Project configuration not found for siteId: {site_id}.")
        self.site_id = site_id


@dataclass
class ManagedSite:
    """A managed site and the API key used to act on it."""
    site_name: str
    site_id: str
    api_key: str
    campaign_id: Optional[str] = None

    @property
    def masked_key(self) -> str:
        """API key with everything but the last four characters hidden."""
        if len(self.api_key) <= 4:
            return "****"
        return "****" + self.api_key[-4:]

    def to_public_dict(self) -> dict:
        data = asdict(self)
        data['api_key'] = self.masked_key
        return data


class SiteStore:
    """YAML-file backed list of managed sites."""

    def __init__(self, path: str | Path = "config/sites.yaml"):
        self.path = Path(path)

    def _load(self) -> list[ManagedSite]:
        if not self.path.exists():
            return []
        with open(self.path) as f:
            raw = yaml.safe_load(f) or []
        return [ManagedSite(**entry) for entry in raw]

    def _write(self, sites: list[ManagedSite]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w") as f:
            yaml.safe_dump([asdict(s) for s in sites], f, sort_keys=False)

    def list(self) -> list[ManagedSite]:
        """Return all managed sites in stored order."""
        return self._load()

    def find(self, site_id: str) -> Optional[ManagedSite]:
        for site in self._load():
            if site.site_id == site_id:
                return site
        return None

    def get(self, site_id: str) -> ManagedSite:
        """Return a site, raising SiteNotFoundError when unknown."""
        site = self.find(site_id)
        if site is None:
            raise SiteNotFoundError(site_id)
        return site

    def save(self, site: ManagedSite, original_site_id: Optional[str] = None) -> ManagedSite:
        """Add or update a site.

        When original_site_id is given the entry stored under that id is
        replaced, which allows changing a site's id in place.
        """
        if not site.site_name or not site.site_id or not site.api_key:
            raise ValueError("A site needs a name, a site id and an API key.")

        sites = self._load()
        lookup_id = original_site_id or site.site_id
        for index, existing in enumerate(sites):
            if existing.site_id == lookup_id:
                sites[index] = site
                break
        else:
            sites.append(site)

        self._write(sites)
        logger.info("Saved site %s (%s)", site.site_name, site.site_id)
        return site

    def delete(self, site_id: str) -> bool:
        """Remove a site. Returns False if it was not stored."""
        sites = self._load()
        remaining = [s for s in sites if s.site_id != site_id]
        if len(remaining) == len(sites):
            return False
        self._write(remaining)
        logger.info("Removed site %s", site_id)
        return True
