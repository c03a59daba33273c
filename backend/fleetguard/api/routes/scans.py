"""
API routes for website security scans
"""
from fastapi import APIRouter, Body, Depends, Query
from fastapi.responses import JSONResponse
from typing import List, Optional
import logging

from fleetguard.api.deps import get_coordinator, get_repository
from fleetguard.core.error_handling.exceptions import ScanNotFoundException
from fleetguard.core.repository.scan_repository import ScanRepository
from fleetguard.core.scanner.coordinator import ScanCoordinator
from fleetguard.schemas.scan import ScanCreate, ScanRecordResponse, to_flat_view

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/{website_id}/security-scan", response_model=ScanRecordResponse)
async def start_security_scan(
    website_id: int,
    scan_data: Optional[ScanCreate] = Body(default=None),
    coordinator: ScanCoordinator = Depends(get_coordinator),
):
    """
    Run a security scan for a website and return the finished record.

    409 with Retry-After when a scan for the website is already running.
    """
    trigger = (scan_data or ScanCreate()).trigger
    logger.info(f"[API] Security scan requested for website {website_id} ({trigger.value})")
    scan = await coordinator.start_scan(website_id, trigger)
    return ScanRecordResponse.model_validate(scan)


@router.get("/{website_id}/security-scans/latest", response_model=ScanRecordResponse)
async def get_latest_security_scan(
    website_id: int,
    flat: bool = Query(False, description="Also include the legacy flat result fields"),
    repository: ScanRepository = Depends(get_repository),
):
    scan = repository.latest_completed(website_id)
    if scan is None:
        raise ScanNotFoundException(website_id)

    record = ScanRecordResponse.model_validate(scan)
    if not flat:
        return record

    body = record.model_dump(mode="json", by_alias=True)
    body.update(to_flat_view(record))
    return JSONResponse(content=body)


@router.get("/{website_id}/security-scans", response_model=List[ScanRecordResponse])
async def get_security_scan_history(
    website_id: int,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    repository: ScanRepository = Depends(get_repository),
):
    scans = repository.history(website_id, page=page, page_size=page_size)
    return [ScanRecordResponse.model_validate(scan) for scan in scans]


@router.get("/{website_id}/security-scans/{scan_id}", response_model=ScanRecordResponse)
async def get_security_scan(
    website_id: int,
    scan_id: int,
    repository: ScanRepository = Depends(get_repository),
):
    scan = repository.get(website_id, scan_id)
    if scan is None:
        raise ScanNotFoundException(website_id, scan_id)
    return ScanRecordResponse.model_validate(scan)
