"""Error kinds shared by the commerce core services."""

from __future__ import annotations

from typing import Any


class CommerceError(RuntimeError):
    """Base exception for commerce core failures.

    ``kind`` is the stable machine-readable error category returned to callers.
    """

    kind: str = "CommerceError"

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    def as_dict(self) -> dict[str, str]:
        return {"kind": self.kind, "message": self.message}


class NotFoundError(CommerceError):
    """Unknown order or member."""

    kind = "NotFound"


class InvalidTransitionError(CommerceError):
    """A status change rejected by the transition guard."""

    kind = "InvalidTransition"

    def __init__(self, current_status: Any, requested_status: Any, *, reason: str | None = None) -> None:
        current = getattr(current_status, "value", current_status)
        requested = getattr(requested_status, "value", requested_status)
        message = f"Cannot transition order from {current} to {requested}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message, current_status=current, requested_status=requested)
        self.current_status = current_status
        self.requested_status = requested_status


class ValidationFailedError(CommerceError):
    """Malformed amount, quantity, price or status."""

    kind = "ValidationError"


class ConflictError(CommerceError):
    """A compare-and-set write lost a race."""

    kind = "ConflictError"


class UpstreamFailureError(CommerceError):
    """The order store or point ledger could not be reached."""

    kind = "UpstreamFailure"


class ForbiddenError(CommerceError):
    """Operation reserved for administrators."""

    kind = "Forbidden"


class UnauthorizedError(CommerceError):
    """Missing or rejected caller credentials."""

    kind = "Unauthorized"


__all__ = [
    "CommerceError",
    "ConflictError",
    "ForbiddenError",
    "InvalidTransitionError",
    "NotFoundError",
    "UnauthorizedError",
    "UpstreamFailureError",
    "ValidationFailedError",
]
