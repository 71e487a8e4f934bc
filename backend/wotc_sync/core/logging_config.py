"""
Logging for the WOTC sync engine.

Log calls attach sync context through ``extra=`` (job_id, connection_id,
provider, job_type, jurisdiction). The JSON formatter lifts those fields to
the top level so a job can be followed across retries; the console formatter
appends them as a short suffix.
"""

import json
import logging
import sys
import traceback
import uuid
from datetime import datetime
from typing import Any, Dict, Optional

from wotc_sync.core.config import settings

# Context fields, in display order
CONTEXT_FIELDS = ("request_id", "job_id", "connection_id", "provider", "job_type", "jurisdiction")


def record_context(record: logging.LogRecord) -> Dict[str, Any]:
    return {
        key: getattr(record, key) for key in CONTEXT_FIELDS
        if getattr(record, key, None) is not None
    }


class JSONFormatter(logging.Formatter):
    """One JSON object per line for the log aggregator."""

    def __init__(self, service_name: str = "wotc-sync-engine"):
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.utcnow().isoformat() + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": self.service_name,
            "environment": settings.ENVIRONMENT,
        }
        log_data.update(record_context(record))

        if record.exc_info:
            log_data["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": traceback.format_exception(*record.exc_info),
            }

        return json.dumps(log_data, default=str)


class ColoredFormatter(logging.Formatter):
    """Colored formatter for development console output."""

    COLORS = {
        "DEBUG": "\033[36m",     # Cyan
        "INFO": "\033[32m",      # Green
        "WARNING": "\033[33m",   # Yellow
        "ERROR": "\033[31m",     # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, self.RESET)
        timestamp = datetime.fromtimestamp(record.created).strftime("%Y-%m-%d %H:%M:%S")
        message = f"{timestamp} | {record.levelname:8} | {record.name} | {record.getMessage()}"

        context = record_context(record)
        if context:
            message += " [" + " ".join(f"{k}={v}" for k, v in context.items()) + "]"
        message = f"{color}{message}{self.RESET}"

        if record.exc_info:
            message += f"\n{color}{traceback.format_exception(*record.exc_info)[-1].strip()}{self.RESET}"

        return message


def setup_logging(
    service_name: str = "wotc-sync-engine",
    log_level: Optional[str] = None,
    json_logs: Optional[bool] = None,
) -> None:
    """
    Configure application logging.

    Args:
        service_name: Name of the service for log identification
        log_level: Override log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_logs: Override JSON logging (True for production, False for development)
    """
    level = log_level or ("DEBUG" if settings.DEBUG else "INFO")
    use_json = json_logs if json_logs is not None else settings.IS_PRODUCTION

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level))
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(getattr(logging, level))
    console_handler.setFormatter(JSONFormatter(service_name) if use_json else ColoredFormatter())
    root_logger.addHandler(console_handler)

    # Provider HTTP and SSH libraries log every request at INFO
    for noisy in ("uvicorn.access", "sqlalchemy.engine", "httpx", "httpcore", "asyncssh"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    logging.getLogger("wotc_sync.logging").info(
        f"Logging configured: level={level}, format={'JSON' if use_json else 'colored'}"
    )


class RequestLoggingMiddleware:
    """Logs each API request with its status and duration under a short request id."""

    def __init__(self, app):
        self.app = app
        self.logger = logging.getLogger("wotc_sync.http")

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request_id = uuid.uuid4().hex[:8]
        start_time = datetime.utcnow()
        scope.setdefault("state", {})["request_id"] = request_id
        response_status = 0

        async def send_wrapper(message):
            nonlocal response_status
            if message["type"] == "http.response.start":
                response_status = message["status"]
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        except Exception:
            response_status = 500
            raise
        finally:
            path = scope.get("path", "/")
            if path not in ("/health", "/metrics"):
                duration_ms = (datetime.utcnow() - start_time).total_seconds() * 1000
                self.logger.log(
                    logging.WARNING if response_status >= 400 else logging.INFO,
                    f"{scope.get('method', 'UNKNOWN')} {path} {response_status} {duration_ms:.1f}ms",
                    extra={"request_id": request_id},
                )
