"""Shared-secret guard for routes reached through the back-office gateway."""

from fastapi import Header

from roastery_api.api.errors import http_error
from roastery_api.core.settings import settings
from roastery_api.services.errors import UnauthorizedError


async def require_internal_api_key(x_api_key: str = Header("", alias="X-API-Key")) -> None:
    """Admin writes and reports must carry the gateway key when one is configured.

    An empty ``internal_api_key`` leaves the guard open for local development.
    """

    if not settings.internal_api_key:
        return

    if x_api_key != settings.internal_api_key:
        raise http_error(UnauthorizedError("Back-office gateway key missing or invalid"))
