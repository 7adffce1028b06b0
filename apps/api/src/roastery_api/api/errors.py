"""Translate commerce errors into structured HTTP responses."""

from __future__ import annotations

from fastapi import HTTPException, status
from sqlalchemy.exc import SQLAlchemyError

from roastery_api.services.errors import (
    CommerceError,
    ConflictError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    UnauthorizedError,
    UpstreamFailureError,
    ValidationFailedError,
)

_STATUS_BY_ERROR: dict[type[CommerceError], int] = {
    NotFoundError: status.HTTP_404_NOT_FOUND,
    InvalidTransitionError: status.HTTP_409_CONFLICT,
    ConflictError: status.HTTP_409_CONFLICT,
    ValidationFailedError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ForbiddenError: status.HTTP_403_FORBIDDEN,
    UnauthorizedError: status.HTTP_401_UNAUTHORIZED,
    UpstreamFailureError: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def http_error(exc: CommerceError | SQLAlchemyError) -> HTTPException:
    """Map a domain or driver failure to ``{"detail": {"kind", "message"}}``."""

    if isinstance(exc, SQLAlchemyError):
        exc = UpstreamFailureError("Order store is unavailable")
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    for error_type in type(exc).__mro__:
        if error_type in _STATUS_BY_ERROR:
            status_code = _STATUS_BY_ERROR[error_type]
            break
    return HTTPException(status_code=status_code, detail=exc.as_dict())


def internal_error(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={"kind": "InternalError", "message": message},
    )


def malformed_header(message: str) -> HTTPException:
    """Forwarded identity headers that cannot be parsed answer 400."""

    return HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail=ValidationFailedError(message).as_dict(),
    )


__all__ = ["http_error", "internal_error", "malformed_header"]
