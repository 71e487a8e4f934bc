"""
Common API Helper Functions

Maps sync engine errors onto HTTP responses so endpoints share one policy.
"""

from fastapi import HTTPException, status

from wotc_sync.core.exceptions import (
    ConfigurationError,
    IntegrationConnectionError,
    IntegrationError,
    ResourceNotFoundError,
    SubmissionValidationError,
)


def http_error_for(exc: IntegrationError) -> HTTPException:
    """
    HTTPException for an engine error.

    Missing resources are 404, rejected batches 422 with every problem
    listed, other configuration errors 400 and unreachable remotes 502.
    """
    if isinstance(exc, ResourceNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, SubmissionValidationError):
        return HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"message": str(exc), "errors": exc.errors},
        )
    if isinstance(exc, ConfigurationError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if isinstance(exc, IntegrationConnectionError):
        return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))
