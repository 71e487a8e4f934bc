"""
State Submissions API

Portal configuration, batch preview and upload, determination downloads and
transport checks for state workforce agency portals.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Request, Response, status
from pydantic import BaseModel, Field

from wotc_sync.api.deps import get_current_principal, get_portal_service, get_submission_service
from wotc_sync.api.helpers import http_error_for
from wotc_sync.codecs import SubmissionRecord
from wotc_sync.core.exceptions import IntegrationError
from wotc_sync.core.rate_limiter import RateLimits, limiter
from wotc_sync.core.security import Principal
from wotc_sync.services.portal_config import PortalConfigService
from wotc_sync.services.submission import StateSubmissionService

logger = logging.getLogger("wotc_sync.api.submissions")
router = APIRouter()


# =============================================================================
# Pydantic Schemas
# =============================================================================


class EmployeeEntry(BaseModel):
    employee: Dict[str, Any]
    screening: Optional[Dict[str, Any]] = None


class SubmissionBatchRequest(BaseModel):
    """Employees to submit, with the employer filing on their behalf"""

    employer_ein: str
    employer_name: str = ""
    consultant_ein: str = ""
    employees: List[EmployeeEntry] = Field(..., min_length=1)

    def to_records(self) -> List[SubmissionRecord]:
        return [
            SubmissionRecord.from_sources(
                entry.employee,
                entry.screening,
                employer_ein=self.employer_ein,
                employer_name=self.employer_name,
            )
            for entry in self.employees
        ]


class SubmissionPreviewResponse(BaseModel):
    preview: str
    line_count: int
    record_count: int
    file_name: Optional[str] = None
    remote_path: Optional[str] = None


class UploadResponse(BaseModel):
    success: bool
    jurisdiction: str
    remote_path: Optional[str] = None
    file_name: Optional[str] = None
    record_count: int = 0
    error: Optional[str] = None
    timestamp: datetime


class DeterminationFileResponse(BaseModel):
    name: str
    remote_path: str
    size: int
    content: str


class DeterminationsResponse(BaseModel):
    success: bool
    jurisdiction: str
    files: List[DeterminationFileResponse]
    skipped: List[str]
    error: Optional[str] = None


class ConnectionCheckResponse(BaseModel):
    success: bool
    message: str
    directories: List[str]
    proxy_used: bool


class PortalCreateRequest(BaseModel):
    jurisdiction: str = Field(..., min_length=2, max_length=2)
    user_id: str
    password: str
    mfa_type: Optional[str] = None  # totp, authenticator_app, sms, email, backup_code
    mfa_secret: Optional[str] = None
    backup_codes: Optional[List[str]] = None
    challenge_questions: Optional[List[Dict[str, Any]]] = None
    host: Optional[str] = None
    port: Optional[int] = None
    max_batch_size: Optional[int] = Field(None, gt=0)
    submission_frequency: str = "weekly"


class PortalCredentialsRequest(BaseModel):
    user_id: str
    password: str


class PortalStatusRequest(BaseModel):
    status: str


class PortalResponse(BaseModel):
    """Portal configuration without any sealed material"""

    jurisdiction_code: str
    jurisdiction_name: Optional[str] = None
    host: Optional[str] = None
    port: Optional[int] = None
    mfa_type: Optional[str] = None
    layout: str
    max_batch_size: Optional[int] = None
    submission_frequency: str
    status: str
    credentials_rotated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# =============================================================================
# Portal Endpoints
# =============================================================================


@router.get("/portals", response_model=List[PortalResponse])
async def list_portals(portals: PortalConfigService = Depends(get_portal_service)):
    return await portals.list_portals()


@router.post("/portals", response_model=PortalResponse, status_code=status.HTTP_201_CREATED)
async def create_portal(
    body: PortalCreateRequest,
    portals: PortalConfigService = Depends(get_portal_service),
    principal: Principal = Depends(get_current_principal),
):
    logger.info(f"Creating {body.jurisdiction} portal for {principal.subject}", extra={"jurisdiction": body.jurisdiction})
    try:
        return await portals.create_portal(**body.model_dump())
    except IntegrationError as e:
        raise http_error_for(e)


@router.put("/portals/{jurisdiction}/credentials", response_model=PortalResponse)
async def rotate_portal_credentials(
    jurisdiction: str,
    body: PortalCredentialsRequest,
    portals: PortalConfigService = Depends(get_portal_service),
    principal: Principal = Depends(get_current_principal),
):
    logger.info(f"Rotating {jurisdiction} portal credentials for {principal.subject}", extra={"jurisdiction": jurisdiction})
    try:
        return await portals.rotate_credentials(jurisdiction, body.user_id, body.password)
    except IntegrationError as e:
        raise http_error_for(e)


@router.put("/portals/{jurisdiction}/status", response_model=PortalResponse)
async def set_portal_status(
    jurisdiction: str,
    body: PortalStatusRequest,
    portals: PortalConfigService = Depends(get_portal_service),
    principal: Principal = Depends(get_current_principal),
):
    logger.info(f"Setting {jurisdiction} portal to {body.status} for {principal.subject}", extra={"jurisdiction": jurisdiction})
    try:
        return await portals.set_status(jurisdiction, body.status)
    except IntegrationError as e:
        raise http_error_for(e)


# =============================================================================
# Submission Endpoints
# =============================================================================


@router.get("/transport/test", response_model=ConnectionCheckResponse)
async def test_transport(
    jurisdiction: Optional[str] = Query(None, description="Portal to test; defaults to the configured SFTP host"),
    service: StateSubmissionService = Depends(get_submission_service),
):
    try:
        check = await service.test_connection(jurisdiction)
    except IntegrationError as e:
        raise http_error_for(e)
    return ConnectionCheckResponse(
        success=check.success,
        message=check.message,
        directories=check.directories,
        proxy_used=check.proxy_used,
    )


@router.post("/{jurisdiction}/preview", response_model=SubmissionPreviewResponse)
async def preview_submission(
    jurisdiction: str,
    batch: SubmissionBatchRequest,
    limit: int = Query(5, ge=1, le=100),
    service: StateSubmissionService = Depends(get_submission_service),
):
    """Encode a batch without sending it and return the first lines."""
    try:
        preview = await service.preview(
            jurisdiction, batch.to_records(), limit=limit, consultant_ein=batch.consultant_ein
        )
    except IntegrationError as e:
        raise http_error_for(e)
    return SubmissionPreviewResponse(
        preview=preview.preview,
        line_count=preview.line_count,
        record_count=preview.record_count,
        file_name=preview.file_name,
        remote_path=preview.remote_path,
    )


@router.post("/{jurisdiction}/upload", response_model=UploadResponse)
@limiter.limit(RateLimits.STATE_UPLOAD)
async def upload_submission(
    request: Request,
    response: Response,
    jurisdiction: str,
    batch: SubmissionBatchRequest,
    service: StateSubmissionService = Depends(get_submission_service),
    principal: Principal = Depends(get_current_principal),
):
    """
    Encode and upload a batch to the jurisdiction's portal.

    Transport failures are reported in the body with success=false rather
    than as an HTTP error, so callers can record the attempt.
    """
    logger.info(
        f"Uploading {len(batch.employees)} record(s) to {jurisdiction} for {principal.subject}",
        extra={"jurisdiction": jurisdiction},
    )
    try:
        result = await service.upload(jurisdiction, batch.to_records())
    except IntegrationError as e:
        raise http_error_for(e)
    return UploadResponse(
        success=result.success,
        jurisdiction=result.jurisdiction,
        remote_path=result.remote_path,
        file_name=result.file_name,
        record_count=result.record_count,
        error=result.error,
        timestamp=result.timestamp,
    )


@router.get("/{jurisdiction}/determinations", response_model=DeterminationsResponse)
@limiter.limit(RateLimits.DETERMINATIONS)
async def download_determinations(
    request: Request,
    response: Response,
    jurisdiction: str,
    service: StateSubmissionService = Depends(get_submission_service),
):
    try:
        download = await service.download_determinations(jurisdiction)
    except IntegrationError as e:
        raise http_error_for(e)
    return DeterminationsResponse(
        success=download.success,
        jurisdiction=download.jurisdiction,
        files=[
            DeterminationFileResponse(
                name=f.name,
                remote_path=f.remote_path,
                size=f.size,
                content=f.content.decode("ascii", errors="replace"),
            )
            for f in download.files
        ],
        skipped=download.skipped,
        error=download.error,
    )
