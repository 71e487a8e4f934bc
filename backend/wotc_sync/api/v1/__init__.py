from fastapi import APIRouter, Depends

from wotc_sync.api.deps import get_current_principal
from wotc_sync.api.v1 import integrations, submissions

api_router = APIRouter()
api_router.include_router(integrations.webhook_router, prefix="/integrations", tags=["webhooks"])
api_router.include_router(
    integrations.router,
    prefix="/integrations",
    tags=["integrations"],
    dependencies=[Depends(get_current_principal)],
)
api_router.include_router(
    submissions.router,
    prefix="/submissions",
    tags=["submissions"],
    dependencies=[Depends(get_current_principal)],
)
