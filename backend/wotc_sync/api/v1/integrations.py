"""
Integrations API

Webhook intake, operator-triggered syncs and integration health for payroll
and ATS connections.
"""

import dataclasses
import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from pydantic import BaseModel

from wotc_sync.api.deps import (
    get_current_principal,
    get_integration_monitor,
    get_scheduler,
    get_sync_repository,
    verified_webhook_body,
)
from wotc_sync.api.helpers import http_error_for
from wotc_sync.connectors import SyncJobType
from wotc_sync.connectors.base import validate_field_mappings
from wotc_sync.core.exceptions import IntegrationError, ResourceNotFoundError
from wotc_sync.core.rate_limiter import RateLimits, limiter
from wotc_sync.core.security import Principal
from wotc_sync.services.health import IntegrationMonitor
from wotc_sync.services.repository import SyncRepository
from wotc_sync.services.scheduler import SyncScheduler

logger = logging.getLogger("wotc_sync.api.integrations")

# Operator endpoints; mounted behind bearer-token auth
router = APIRouter()
# Provider callbacks; authenticated by webhook signature instead
webhook_router = APIRouter()


# =============================================================================
# Pydantic Schemas
# =============================================================================


class SyncJobResponse(BaseModel):
    """Outcome of one sync job execution"""

    job_id: str
    success: bool
    started_at: datetime
    completed_at: datetime
    retry_count: int
    records_processed: int
    records_created: int
    records_updated: int
    records_failed: int
    errors: List[str]


class WebhookResponse(BaseModel):
    accepted: bool
    job: Optional[SyncJobResponse] = None


class ManualSyncRequest(BaseModel):
    job_type: SyncJobType


class FieldMappingsRequest(BaseModel):
    mappings: Dict[str, str]


class FieldMappingsResponse(BaseModel):
    connection_id: int
    mappings: Dict[str, str]


class ConnectionHealthResponse(BaseModel):
    connection_id: int
    provider_name: str
    status: str  # 'healthy', 'degraded', 'critical', 'disconnected'
    last_sync_at: Optional[datetime]
    success_rate: float
    error_count_24h: int
    avg_sync_duration_ms: float
    total_records_synced: int
    issues: List[str]


class SyncErrorResponse(BaseModel):
    id: int
    connection_id: int
    provider_name: str
    sync_type: str
    error_message: str
    error_details: Any = None
    timestamp: Optional[datetime]
    records_affected: int


class FlowBucketResponse(BaseModel):
    key: str
    records_processed: int
    records_created: int
    records_updated: int
    sync_count: int


class DataFlowResponse(BaseModel):
    hourly: List[FlowBucketResponse]
    daily: List[FlowBucketResponse]
    by_provider: List[FlowBucketResponse]


class DashboardResponse(BaseModel):
    overview: Dict[str, int]
    sync_activity: Dict[str, float]
    connection_health: List[ConnectionHealthResponse]
    recent_errors: List[SyncErrorResponse]
    data_flow: DataFlowResponse


# =============================================================================
# Endpoints
# =============================================================================


@webhook_router.post("/webhooks/{provider_id}", response_model=WebhookResponse)
@limiter.limit(RateLimits.WEBHOOK)
async def receive_webhook(
    request: Request,
    response: Response,
    provider_id: str,
    body: bytes = Depends(verified_webhook_body),
    scheduler: SyncScheduler = Depends(get_scheduler),
):
    """
    Receive a provider webhook and run the sync job its event maps to.

    Events that map to no job, or providers without an active connection,
    are acknowledged with accepted=false.
    """
    try:
        payload = json.loads(body or b"{}")
    except json.JSONDecodeError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Webhook body must be JSON")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Webhook body must be a JSON object")

    job = await scheduler.handle_webhook(provider_id, payload)
    if job is None:
        return WebhookResponse(accepted=False)
    return WebhookResponse(accepted=True, job=SyncJobResponse(**job.to_dict()))


@router.post("/connections/{connection_id}/sync", response_model=SyncJobResponse)
@limiter.limit(RateLimits.SYNC_TRIGGER)
async def trigger_sync(
    request: Request,
    response: Response,
    connection_id: int,
    body: ManualSyncRequest,
    scheduler: SyncScheduler = Depends(get_scheduler),
    principal: Principal = Depends(get_current_principal),
):
    """Run a sync job for a connection now."""
    logger.info(f"Manual {body.job_type.value} sync on connection {connection_id} requested by {principal.subject}")
    try:
        job = await scheduler.trigger_manual_sync(connection_id, body.job_type)
    except IntegrationError as e:
        raise http_error_for(e)
    return SyncJobResponse(**job.to_dict())


async def _get_connection_or_404(repository: SyncRepository, connection_id: int):
    connection = await repository.get_connection(connection_id)
    if connection is None:
        raise http_error_for(ResourceNotFoundError(f"Integration connection {connection_id} not found"))
    return connection


@router.get("/connections/{connection_id}/field-mappings", response_model=FieldMappingsResponse)
async def get_field_mappings(
    connection_id: int,
    repository: SyncRepository = Depends(get_sync_repository),
):
    connection = await _get_connection_or_404(repository, connection_id)
    return FieldMappingsResponse(connection_id=connection.id, mappings=connection.field_mappings or {})


@router.put("/connections/{connection_id}/field-mappings", response_model=FieldMappingsResponse)
async def set_field_mappings(
    connection_id: int,
    body: FieldMappingsRequest,
    repository: SyncRepository = Depends(get_sync_repository),
    principal: Principal = Depends(get_current_principal),
):
    """
    Replace the provider-field to employee-column overrides for a connection.

    Keys are dotted paths into the provider payload; values must be
    importable employee columns. An empty mapping restores the built-in one.
    """
    connection = await _get_connection_or_404(repository, connection_id)
    try:
        mappings = validate_field_mappings(body.mappings)
    except IntegrationError as e:
        raise http_error_for(e)

    await repository.set_field_mappings(connection, mappings)
    logger.info(
        f"Field mappings for connection {connection_id} set to {len(mappings)} column(s) by {principal.subject}",
        extra={"connection_id": connection_id},
    )
    return FieldMappingsResponse(connection_id=connection.id, mappings=connection.field_mappings or {})


@router.get("/health", response_model=List[ConnectionHealthResponse])
async def connections_health(
    employer_id: str = Query(..., description="Employer whose active connections to report"),
    monitor: IntegrationMonitor = Depends(get_integration_monitor),
):
    health = await monitor.get_connections_health(employer_id)
    return [dataclasses.asdict(h) for h in health]


@router.get("/dashboard", response_model=DashboardResponse)
async def integration_dashboard(
    employer_id: str = Query(...),
    monitor: IntegrationMonitor = Depends(get_integration_monitor),
):
    dashboard = await monitor.get_dashboard(employer_id)
    return dataclasses.asdict(dashboard)
