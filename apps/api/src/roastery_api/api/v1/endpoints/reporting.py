from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from roastery_api.api.dependencies.security import require_internal_api_key
from roastery_api.api.dependencies.session import require_admin
from roastery_api.api.errors import http_error, internal_error
from roastery_api.db.session import get_session
from roastery_api.schemas.loyalty import SalesSummaryResponse, WeeklySalesResponse
from roastery_api.services.orders.revenue import RevenueAggregator

router = APIRouter(
    prefix="/reporting",
    tags=["Reporting"],
    dependencies=[Depends(require_internal_api_key), Depends(require_admin)],
)


@router.get("/sales-summary", response_model=SalesSummaryResponse)
async def get_sales_summary(
    weeks: int | None = Query(None, ge=1, le=52),
    db: AsyncSession = Depends(get_session),
) -> SalesSummaryResponse:
    """Today's paid revenue and weekly revenue for the back-office dashboard."""

    try:
        summary = await RevenueAggregator(db).sales_summary(weeks=weeks)
    except SQLAlchemyError as exc:
        raise http_error(exc) from exc
    except Exception as exc:
        logger.error("Sales summary aggregation failed", weeks=weeks, error=str(exc))
        raise internal_error("Failed to build sales summary") from exc

    return SalesSummaryResponse(
        timezone=summary.timezone,
        as_of=summary.as_of,
        today_sales=summary.today_sales,
        today_paid_orders=summary.today_paid_orders,
        today_orders=summary.today_orders,
        weekly=[
            WeeklySalesResponse(
                label=week.label,
                start_date=week.start_date,
                end_date=week.end_date,
                total_sales=week.total_sales,
                order_count=week.order_count,
            )
            for week in summary.weekly
        ],
    )
