"""Observability endpoints for loyalty pipeline counters."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from roastery_api.api.dependencies.security import require_internal_api_key
from roastery_api.observability.loyalty import get_loyalty_store

router = APIRouter(prefix="/observability", tags=["Observability"])


@router.get(
    "/loyalty",
    dependencies=[Depends(require_internal_api_key)],
    summary="Loyalty pipeline observability snapshot",
)
async def get_loyalty_snapshot() -> dict[str, object]:
    """Reward, grade and bulk-operation counters since process start."""

    return get_loyalty_store().snapshot().as_dict()
