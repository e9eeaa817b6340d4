"""
Jobs Router

Start, observe and control bulk import and bulk delete jobs.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ValidationError

from sitedesk.jobs import JobConflictError, JobRegistry, JobType, parse_recipients
from sitedesk.platform import Member
from sitedesk.sites import SiteStore
from web.api.deps import get_registry, get_sites

router = APIRouter()


class ImportRequest(BaseModel):
    """Import job request."""
    recipients: str | list[str]
    custom_subject: Optional[str] = None
    delay_seconds: Optional[float] = None


class BulkDeleteRequest(BaseModel):
    """Bulk delete job request."""
    members: list[Member]
    batch_size: Optional[int] = None
    settle_seconds: Optional[float] = None
    contact_delay_seconds: Optional[float] = None


def _require_site(sites: SiteStore, site_id: str) -> None:
    if sites.find(site_id) is None:
        raise HTTPException(status_code=404, detail=f"Site {site_id} not found")


def _start(registry: JobRegistry, site_id: str, job_type: JobType, work_items, overrides: dict) -> dict:
    try:
        state = registry.start(site_id, job_type, work_items, overrides)
    except JobConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return {"site_id": site_id, "type": job_type.value, "status": state.status.value, "total": state.total}


@router.get("")
async def list_jobs(registry: JobRegistry = Depends(get_registry)):
    """List every tracked job state."""
    states = [state.model_dump(mode="json") for state in registry.states()]
    states.sort(key=lambda s: (s.get("started_at") or "", s["key"]), reverse=True)
    return {"jobs": states}


@router.get("/{job_type}/{site_id}")
async def get_job(job_type: JobType, site_id: str, registry: JobRegistry = Depends(get_registry)):
    """Get the job state for a site."""
    return registry.get(site_id, job_type).model_dump(mode="json")


@router.post("/import/{site_id}", status_code=202)
async def start_import(
    site_id: str,
    request: ImportRequest,
    registry: JobRegistry = Depends(get_registry),
    sites: SiteStore = Depends(get_sites),
):
    """Start an import job."""
    _require_site(sites, site_id)
    if not parse_recipients(request.recipients):
        raise HTTPException(status_code=400, detail="No valid email addresses found to import.")

    overrides = request.model_dump(exclude={"recipients"}, exclude_none=True)
    return _start(registry, site_id, JobType.IMPORT, request.recipients, overrides)


@router.post("/bulk-delete/{site_id}", status_code=202)
async def start_bulk_delete(
    site_id: str,
    request: BulkDeleteRequest,
    registry: JobRegistry = Depends(get_registry),
    sites: SiteStore = Depends(get_sites),
):
    """Start a bulk delete job."""
    _require_site(sites, site_id)
    if not request.members:
        raise HTTPException(status_code=400, detail="Select at least one member to delete.")

    overrides = request.model_dump(exclude={"members"}, exclude_none=True)
    return _start(registry, site_id, JobType.BULK_DELETE, request.members, overrides)


@router.post("/{job_type}/{site_id}/pause")
async def pause_job(job_type: JobType, site_id: str, registry: JobRegistry = Depends(get_registry)):
    """Pause a running job."""
    changed = registry.pause(site_id, job_type)
    return {"success": changed, "status": registry.get(site_id, job_type).status.value}


@router.post("/{job_type}/{site_id}/resume")
async def resume_job(job_type: JobType, site_id: str, registry: JobRegistry = Depends(get_registry)):
    """Resume a paused job."""
    changed = registry.resume(site_id, job_type)
    return {"success": changed, "status": registry.get(site_id, job_type).status.value}


@router.post("/{job_type}/{site_id}/cancel")
async def cancel_job(job_type: JobType, site_id: str, registry: JobRegistry = Depends(get_registry)):
    """Cancel an active job."""
    changed = registry.cancel(site_id, job_type)
    return {"success": changed, "status": registry.get(site_id, job_type).status.value}
