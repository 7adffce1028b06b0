from fastapi import APIRouter

from .endpoints import (
    health,
    members,
    observability,
    orders,
    points,
    reporting,
)

router = APIRouter()
router.include_router(health.router, prefix="/health", tags=["Health"])
router.include_router(orders.router)
router.include_router(points.router)
router.include_router(members.router)
router.include_router(reporting.router)
router.include_router(observability.router)
