import logging
import traceback
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from pydantic import BaseModel
from slowapi.errors import RateLimitExceeded

from wotc_sync.api.v1 import api_router
from wotc_sync.core.config import settings
from wotc_sync.core.logging_config import RequestLoggingMiddleware, setup_logging
from wotc_sync.core.rate_limiter import limiter, rate_limit_exceeded_handler
from wotc_sync.db.session import check_db_connection, engine
from wotc_sync.services.scheduler import get_sync_scheduler, start_sync_scheduler, stop_sync_scheduler

# Configure structured logging (JSON in production, colored in development)
setup_logging()
logger = logging.getLogger("wotc_sync")


class ErrorResponse(BaseModel):
    """Standardized error response format."""
    error: str
    detail: str | None = None
    timestamp: str
    path: str | None = None


class HealthResponse(BaseModel):
    """Health check response format."""
    status: str
    service: str
    version: str
    environment: str
    checks: dict[str, bool]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the sync scheduler with the app and release resources on shutdown."""
    logger.info("Application starting up...")
    await start_sync_scheduler()
    logger.info("Application startup complete")
    try:
        yield
    finally:
        logger.info("Application shutting down...")
        await stop_sync_scheduler()
        await engine.dispose()
        logger.info("Database connections closed")


app = FastAPI(
    title=settings.PROJECT_NAME,
    description="WOTC state submission and payroll/ATS integration sync engine",
    version="1.0.0",
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
    lifespan=lifespan,
)

# Add rate limiter to app state
app.state.limiter = limiter

# Register rate limit exceeded handler
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

cors_origins = settings.ALLOWED_ORIGINS


def get_cors_headers(request: Request) -> dict:
    """Get CORS headers based on request origin."""
    origin = request.headers.get("origin", "")
    if origin in cors_origins:
        return {
            "Access-Control-Allow-Origin": origin,
            "Access-Control-Allow-Credentials": "true",
        }
    return {}


# Global exception handler - catches all unhandled exceptions
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Global exception handler that returns consistent error responses.
    In production, sensitive details are hidden to prevent information leakage.
    """
    error_id = datetime.utcnow().strftime("%Y%m%d%H%M%S%f")

    logger.error(
        f"Unhandled exception [{error_id}]: {exc}\n"
        f"Path: {request.url.path}\n"
        f"Method: {request.method}\n"
        f"Traceback: {traceback.format_exc()}"
    )

    headers = get_cors_headers(request)

    if settings.ENVIRONMENT.lower() == "production":
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=ErrorResponse(
                error="Internal server error",
                detail=f"An unexpected error occurred. Reference ID: {error_id}",
                timestamp=datetime.utcnow().isoformat(),
                path=request.url.path,
            ).model_dump(),
            headers=headers,
        )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=ErrorResponse(
            error=exc.__class__.__name__,
            detail=str(exc),
            timestamp=datetime.utcnow().isoformat(),
            path=request.url.path,
        ).model_dump(),
        headers=headers,
    )


app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Request logging middleware with timing and request IDs
app.add_middleware(RequestLoggingMiddleware)

app.include_router(api_router, prefix=settings.API_V1_STR)

# Prometheus metrics; exposed at /metrics when ENABLE_METRICS=true
instrumentator = Instrumentator(
    should_group_status_codes=False,
    should_ignore_untemplated=True,
    should_respect_env_var=True,
    should_instrument_requests_inprogress=True,
    excluded_handlers=["/health", "/metrics"],
    inprogress_name="wotc_sync_inprogress_requests",
    inprogress_labels=True,
)
instrumentator.instrument(app).expose(app, include_in_schema=False)


@app.get("/health", response_model=HealthResponse)
async def health_check():
    """
    Returns 503 when the database is unreachable. A stopped scheduler only
    degrades the service; manual syncs and submissions still work.
    """
    db_healthy = await check_db_connection()
    scheduler_running = get_sync_scheduler().is_running()

    checks = {
        "database": db_healthy,
        "scheduler": scheduler_running,
    }

    response = HealthResponse(
        status="healthy" if all(checks.values()) else ("degraded" if db_healthy else "unhealthy"),
        service="wotc-sync",
        version="1.0.0",
        environment=settings.ENVIRONMENT,
        checks=checks,
    )

    if not db_healthy:
        logger.warning(f"Health check failed (critical): {checks}")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=response.model_dump(),
        )

    return response


@app.get("/")
async def root():
    return {"message": f"Welcome to {settings.PROJECT_NAME}"}
