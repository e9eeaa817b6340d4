"""
Sites Router

Endpoints for managing sites and looking up their members and campaigns.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from sitedesk.platform import CampaignActivity, PlatformClient, PlatformError
from sitedesk.sites import ManagedSite, SiteNotFoundError, SiteStore
from web.api.deps import get_client, get_sites

router = APIRouter()


class SiteRequest(BaseModel):
    """Site create/update request."""
    site_name: str
    site_id: str
    api_key: str
    campaign_id: Optional[str] = None
    original_site_id: Optional[str] = None


def _platform_error(e: PlatformError) -> HTTPException:
    status = 404 if e.status_code == 404 else 502
    return HTTPException(status_code=status, detail=e.message)


@router.get("")
async def list_sites(sites: SiteStore = Depends(get_sites)):
    """List managed sites with masked API keys."""
    return {"sites": [site.to_public_dict() for site in sites.list()]}


@router.post("")
async def save_site(request: SiteRequest, sites: SiteStore = Depends(get_sites)):
    """Add a site or update an existing one."""
    site = ManagedSite(
        site_name=request.site_name,
        site_id=request.site_id,
        api_key=request.api_key,
        campaign_id=request.campaign_id,
    )
    try:
        sites.save(site, original_site_id=request.original_site_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"success": True, "site": site.to_public_dict()}


@router.delete("/{site_id}")
async def delete_site(site_id: str, sites: SiteStore = Depends(get_sites)):
    """Remove a site."""
    if not sites.delete(site_id):
        raise HTTPException(status_code=404, detail="Site not found")
    return {"success": True}


@router.get("/{site_id}/members")
async def list_members(
    site_id: str,
    query: Optional[str] = None,
    client: PlatformClient = Depends(get_client),
):
    """List or search a site's members."""
    try:
        if query:
            members = await client.search_members(site_id, query)
        else:
            members = await client.list_members(site_id)
    except PlatformError as e:
        raise _platform_error(e)
    return {"members": [m.model_dump() for m in members]}


@router.get("/{site_id}/owner")
async def get_owner(site_id: str, client: PlatformClient = Depends(get_client)):
    """Get the site owner's contact id, which bulk deletion always skips."""
    try:
        contact_id = await client.get_owner_contact_id(site_id)
    except PlatformError as e:
        raise _platform_error(e)
    return {"contact_id": contact_id}


@router.get("/{site_id}/campaign")
async def get_campaign(
    site_id: str,
    activity: CampaignActivity = CampaignActivity.DELIVERED,
    sites: SiteStore = Depends(get_sites),
    client: PlatformClient = Depends(get_client),
):
    """Get the statistics and recipients of the site's email campaign."""
    try:
        site = sites.get(site_id)
    except SiteNotFoundError:
        raise HTTPException(status_code=404, detail="Site not found")
    if not site.campaign_id:
        raise HTTPException(status_code=400, detail="No Campaign ID is configured for this site.")

    try:
        stats = await client.get_campaign_stats(site_id, site.campaign_id)
        recipients = await client.get_campaign_recipients(site_id, site.campaign_id, activity)
    except PlatformError as e:
        raise _platform_error(e)

    return {
        "campaign_id": site.campaign_id,
        "activity": activity.value,
        "stats": stats.model_dump() if stats else None,
        "recipients": [r.model_dump() for r in recipients],
    }
