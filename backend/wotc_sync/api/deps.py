import logging
from typing import AsyncGenerator, Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy.ext.asyncio import AsyncSession

from wotc_sync.core.config import settings
from wotc_sync.core.security import Principal, decode_access_token, verify_webhook_signature
from wotc_sync.db.session import AsyncSessionLocal
from wotc_sync.services.health import IntegrationMonitor
from wotc_sync.services.portal_config import PortalConfigService
from wotc_sync.services.repository import SyncRepository
from wotc_sync.services.scheduler import SyncScheduler, get_sync_scheduler
from wotc_sync.services.submission import StateSubmissionService

logger = logging.getLogger("wotc_sync.deps")

SIGNATURE_HEADER = "X-Webhook-Signature"

bearer_scheme = HTTPBearer(auto_error=False)


async def get_db() -> AsyncGenerator:
    async with AsyncSessionLocal() as session:
        yield session


async def get_current_principal(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Principal:
    """
    Caller identified by the request's bearer token.

    Raises 401 when the token is missing, malformed, badly signed or expired.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if credentials is None:
        raise credentials_exception

    try:
        payload = decode_access_token(credentials.credentials)
    except JWTError:
        raise credentials_exception

    subject = payload.get("sub")
    if not subject:
        raise credentials_exception

    principal = Principal(subject=str(subject))
    # Read by the rate limiter key function
    request.state.principal = principal
    return principal


def get_scheduler() -> SyncScheduler:
    return get_sync_scheduler()


def get_integration_monitor() -> IntegrationMonitor:
    return IntegrationMonitor()


def get_sync_repository(db: AsyncSession = Depends(get_db)) -> SyncRepository:
    return SyncRepository(db)


def get_submission_service(db: AsyncSession = Depends(get_db)) -> StateSubmissionService:
    return StateSubmissionService(db)


async def verified_webhook_body(request: Request) -> bytes:
    """
    Raw webhook body, with its HMAC signature checked when a signing secret is configured.
    """
    body = await request.body()
    secret = settings.WEBHOOK_SIGNING_SECRET
    if secret and not verify_webhook_signature(body, request.headers.get(SIGNATURE_HEADER), secret):
        logger.warning(f"Rejected webhook with invalid signature on {request.url.path}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid webhook signature",
        )
    return body


def get_portal_service(db: AsyncSession = Depends(get_db)) -> PortalConfigService:
    return PortalConfigService(db)
