"""
Platform Client

Async HTTP client for the member/contact platform's REST endpoints.
Each call performs one network operation for one unit of work.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field

from sitedesk.sites import SiteNotFoundError, SiteStore

logger = logging.getLogger(__name__)

DEFAULT_API_URL = 'https://www.wixapis.com'
MEMBER_LIST_LIMIT = 1000
MEMBER_SEARCH_LIMIT = 100


class PlatformError(Exception):
    """Raised when a platform call fails (network, HTTP status or application error)."""

    def __init__(self, message: str, status_code: Optional[int] = None, details: Any = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.details = details


class Member(BaseModel):
    """A site member together with its linked contact."""
    model_config = ConfigDict(populate_by_name=True)

    id: str
    contact_id: Optional[str] = Field(default=None, alias='contactId')
    login_email: Optional[str] = Field(default=None, alias='loginEmail')
    status: Optional[str] = None
    nickname: Optional[str] = None

    @classmethod
    def from_api(cls, raw: dict) -> 'Member':
        profile = raw.get('profile') or {}
        return cls(
            id=raw['id'],
            contact_id=raw.get('contactId'),
            login_email=raw.get('loginEmail'),
            status=raw.get('status'),
            nickname=profile.get('nickname'),
        )

    @property
    def label(self) -> str:
        return self.login_email or self.nickname or self.id


class CampaignActivity(str, Enum):
    """Recipient activities that can be listed for an email campaign."""
    DELIVERED = 'DELIVERED'
    OPENED = 'OPENED'
    CLICKED = 'CLICKED'
    BOUNCED = 'BOUNCED'
    NOT_SENT = 'NOT_SENT'


class CampaignStats(BaseModel):
    """Email delivery counters for one campaign."""
    model_config = ConfigDict(populate_by_name=True)

    delivered: int = 0
    opened: int = 0
    clicked: int = 0
    bounced: int = 0
    complained: int = 0
    not_sent: int = Field(default=0, alias='notSent')


class CampaignRecipient(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    contact_id: Optional[str] = Field(default=None, alias='contactId')
    email_address: Optional[str] = Field(default=None, alias='emailAddress')
    full_name: Optional[str] = Field(default=None, alias='fullName')
    last_activity_date: Optional[str] = Field(default=None, alias='lastActivityDate')
    contact_deleted: bool = Field(default=False, alias='contactDeleted')


@dataclass
class ImportOutcome:
    """Successful single-user import."""
    message: str
    detail: dict = field(default_factory=dict)


@dataclass
class BulkDeleteOutcome:
    """Per-item breakdown of a bulk member deletion."""
    succeeded_ids: list[str]
    failed_ids: list[str]
    total_successes: int


class PlatformClient:
    """Client for the platform API, resolving credentials per site id.

    The import call goes to the console's own backend functions
    (functions_url); everything else goes to the platform API (api_url).
    """

    def __init__(
        self,
        sites: SiteStore,
        api_url: str = DEFAULT_API_URL,
        functions_url: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.sites = sites
        self.api_url = api_url.rstrip('/')
        self.functions_url = functions_url.rstrip('/') if functions_url else None
        self.client = httpx.AsyncClient(timeout=timeout, follow_redirects=True, transport=transport)

    @classmethod
    def from_config(cls, config: dict, sites: SiteStore, **kwargs) -> 'PlatformClient':
        platform = config.get('platform', {})
        return cls(
            sites,
            api_url=platform.get('api_url') or DEFAULT_API_URL,
            functions_url=platform.get('functions_url'),
            timeout=platform.get('timeout', 30.0),
            **kwargs,
        )

    async def aclose(self) -> None:
        await self.client.aclose()

    async def __aenter__(self) -> 'PlatformClient':
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    def _get_headers(self, site_id: str) -> dict:
        """Get auth headers for a site."""
        try:
            site = self.sites.get(site_id)
        except SiteNotFoundError as e:
            raise PlatformError(str(e), status_code=404) from e
        return {
            'Content-Type': 'application/json',
            'Authorization': site.api_key,
            'wix-site-id': site.site_id,
        }

    async def _request(self, method: str, path: str, site_id: str, **kwargs) -> Any:
        """Send an authenticated platform request and decode the JSON body."""
        url = f"{self.api_url}{path}"
        logger.debug("%s %s (site %s)", method, path, site_id)
        try:
            response = await self.client.request(method, url, headers=self._get_headers(site_id), **kwargs)
        except httpx.HTTPError as e:
            raise PlatformError(f"Request to {path} failed: {e}") from e

        if not response.is_success:
            message, details = _error_from_response(response)
            raise PlatformError(message, status_code=response.status_code, details=details)

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            return response.text

    # --- Single-item operations ---

    async def import_user(self, site_id: str, email: str, subject: str) -> ImportOutcome:
        """Import one recipient into a site through the console backend."""
        if not self.functions_url:
            raise PlatformError("No functions URL configured for imports.")

        try:
            response = await self.client.post(
                f"{self.functions_url}/importUsers",
                json={'targetSiteId': site_id, 'email': email, 'customSubject': subject},
            )
        except httpx.HTTPError as e:
            raise PlatformError(str(e) or "Network error during import.") from e

        if not response.text:
            raise PlatformError("Received an empty response from the server.", status_code=response.status_code)
        try:
            result = response.json()
        except ValueError as e:
            raise PlatformError(
                f"Unexpected response from the server: {response.text[:200]}",
                status_code=response.status_code,
            ) from e

        if not isinstance(result, dict):
            result = {'message': str(result)}
        if not response.is_success or result.get('status') == 'ERROR':
            raise PlatformError(
                result.get('message') or "An unknown error occurred during import.",
                status_code=response.status_code,
                details=result,
            )

        return ImportOutcome(message=result.get('message') or "Imported.", detail=result)

    async def delete_contact(self, site_id: str, contact_id: str) -> None:
        """Delete one contact."""
        try:
            await self._request('DELETE', f"/contacts/v4/contacts/{contact_id}", site_id)
        except PlatformError as e:
            raise PlatformError(
                f"Failed to delete contact {contact_id}: {e.message}",
                status_code=e.status_code,
                details=e.details,
            ) from e

    # --- Batch operations ---

    async def bulk_delete_members(self, site_id: str, member_ids: list[str]) -> BulkDeleteOutcome:
        """Delete a batch of members in one request."""
        data = await self._request(
            'POST', '/members/v1/members/bulk/delete', site_id,
            json={'memberIds': member_ids},
        )
        if not isinstance(data, dict):
            raise PlatformError("Unexpected bulk delete response.", details=data)

        succeeded = []
        failed = []
        for item in data.get('results', []):
            metadata = item.get('itemMetadata') or {}
            if metadata.get('success'):
                succeeded.append(metadata.get('id'))
            else:
                failed.append(metadata.get('id'))

        total = (data.get('bulkActionMetadata') or {}).get('totalSuccesses', len(succeeded))
        return BulkDeleteOutcome(succeeded_ids=succeeded, failed_ids=failed, total_successes=total)

    # --- Lookups ---

    async def get_owner_contact_id(self, site_id: str) -> str:
        """Return the contact id of the site owner."""
        data = await self._request('GET', f"/sites/v1/sites/{site_id}/contributors", site_id)
        contributors = data.get('contributors', []) if isinstance(data, dict) else []
        for contributor in contributors:
            if contributor.get('role') == 'OWNER' and contributor.get('contactId'):
                return contributor['contactId']
        raise PlatformError("Site owner could not be determined from contributors list.")

    async def list_members(self, site_id: str) -> list[Member]:
        data = await self._request(
            'GET', '/members/v1/members', site_id,
            params={'fieldsets': 'FULL', 'paging.limit': MEMBER_LIST_LIMIT},
        )
        return _parse_members(data)

    async def search_members(self, site_id: str, query: str) -> list[Member]:
        """Search members by login email or nickname."""
        if '@' in query:
            member_filter = {'loginEmail': query}
        else:
            member_filter = {'$or': [
                {'loginEmail': {'$contains': query}},
                {'profile.nickname': {'$contains': query}},
            ]}
        body = {
            'fieldsets': ['FULL'],
            'query': {'filter': member_filter, 'paging': {'limit': MEMBER_SEARCH_LIMIT}},
        }
        data = await self._request('POST', '/members/v1/members/query', site_id, json=body)
        return _parse_members(data)

    # --- Campaign statistics ---

    async def _call_function(self, name: str, body: dict, fallback: str) -> Any:
        """POST to a console backend function and decode its JSON reply."""
        if not self.functions_url:
            raise PlatformError("No functions URL configured for campaign statistics.")

        try:
            response = await self.client.post(f"{self.functions_url}/{name}", json=body)
        except httpx.HTTPError as e:
            raise PlatformError(f"Request to {name} failed: {e}") from e

        try:
            result = response.json()
        except ValueError:
            result = None

        if not response.is_success:
            message = None
            if isinstance(result, dict):
                message = result.get('error') or result.get('message')
            raise PlatformError(message or fallback, status_code=response.status_code, details=result)
        if result is None:
            raise PlatformError(
                f"Unexpected response from the server: {response.text[:200]}",
                status_code=response.status_code,
            )
        return result

    async def get_campaign_stats(self, site_id: str, campaign_id: str) -> Optional[CampaignStats]:
        """Return the email counters of a campaign, or None when it has none."""
        data = await self._call_function(
            'getCampaignStats',
            {'targetSiteId': site_id, 'campaignIds': [campaign_id]},
            "Failed to fetch stats.",
        )
        statistics = data.get('statistics') if isinstance(data, dict) else None
        if not statistics:
            return None
        return CampaignStats.model_validate(statistics[0].get('email') or {})

    async def get_campaign_recipients(
        self,
        site_id: str,
        campaign_id: str,
        activity: CampaignActivity | str = CampaignActivity.DELIVERED,
    ) -> list[CampaignRecipient]:
        """List campaign recipients for one activity, leaving out deleted contacts."""
        activity = CampaignActivity(activity)
        data = await self._call_function(
            'getCampaignRecipients',
            {'targetSiteId': site_id, 'campaignId': campaign_id, 'activity': activity.value},
            "Failed to fetch recipients.",
        )
        raw = data.get('recipients', []) if isinstance(data, dict) else []
        recipients = [CampaignRecipient.model_validate(r) for r in raw]
        return [r for r in recipients if not r.contact_deleted]


def _error_from_response(response: httpx.Response) -> tuple[str, Any]:
    """Extract an error message and details from a failed response."""
    try:
        parsed = response.json()
    except ValueError:
        return f"API Error with non-JSON response: {response.text}", None
    if isinstance(parsed, dict):
        return parsed.get('message') or response.text, parsed.get('details')
    return response.text, None


def _parse_members(data: Any) -> list[Member]:
    if not isinstance(data, dict):
        return []
    return [Member.from_api(m) for m in data.get('members', [])]
