"""Valid-spend aggregation and back-office sales summaries."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import Sequence
from uuid import UUID
from zoneinfo import ZoneInfo

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from roastery_api.core.settings import settings
from roastery_api.models.order import Order, OrderStatusEnum


@dataclass(slots=True)
class WeeklySales:
    label: str
    start_date: date
    end_date: date
    total_sales: int = 0
    order_count: int = 0


@dataclass(slots=True)
class SalesSummary:
    timezone: str
    as_of: datetime
    today_sales: int
    today_paid_orders: int
    today_orders: int
    weekly: list[WeeklySales] = field(default_factory=list)


class RevenueAggregator:
    """Computes spend figures from order rows; nothing here is cached."""

    def __init__(self, db_session: AsyncSession) -> None:
        self._db = db_session

    async def compute_valid_spend(self, member_id: UUID) -> int:
        """Sum of ``total_price`` over the member's orders not cancelled or returned.

        Unknown members simply have no orders and yield 0.
        """

        stmt = select(func.coalesce(func.sum(Order.total_price), 0)).where(
            Order.member_id == member_id,
            Order.status.not_in(tuple(OrderStatusEnum.spend_excluded())),
        )
        total = await self._db.scalar(stmt)
        return int(total or 0)

    async def compute_valid_spend_many(self, member_ids: Sequence[UUID]) -> dict[UUID, int]:
        if not member_ids:
            return {}
        stmt = (
            select(Order.member_id, func.coalesce(func.sum(Order.total_price), 0))
            .where(
                Order.member_id.in_(list(member_ids)),
                Order.status.not_in(tuple(OrderStatusEnum.spend_excluded())),
            )
            .group_by(Order.member_id)
        )
        result = await self._db.execute(stmt)
        totals = {member_id: int(total or 0) for member_id, total in result.all()}
        return {member_id: totals.get(member_id, 0) for member_id in member_ids}

    async def sales_summary(
        self,
        *,
        now: datetime | None = None,
        weeks: int | None = None,
        tz_name: str | None = None,
    ) -> SalesSummary:
        """Today's and recent weekly paid revenue, bucketed by local calendar day.

        The last weekly bucket ends on today's local date.
        """

        zone = ZoneInfo(tz_name or settings.sales_summary_timezone)
        week_count = weeks or settings.sales_summary_weeks
        current = _ensure_aware(now or datetime.now(timezone.utc)).astimezone(zone)
        today = current.date()

        window_start_date = today - timedelta(days=7 * week_count - 1)
        weekly = []
        for index in range(week_count):
            start = window_start_date + timedelta(days=7 * index)
            weekly.append(
                WeeklySales(
                    label=_week_label(start),
                    start_date=start,
                    end_date=start + timedelta(days=6),
                )
            )

        window_start = datetime.combine(window_start_date, time.min, tzinfo=zone).astimezone(timezone.utc)
        stmt = select(Order.created_at, Order.total_price, Order.status).where(Order.created_at >= window_start)
        result = await self._db.execute(stmt)

        paid_statuses = OrderStatusEnum.paid()
        today_sales = 0
        today_paid = 0
        today_orders = 0
        for created_at, total_price, status in result.all():
            local_day = _ensure_aware(created_at).astimezone(zone).date()
            if local_day > today:
                continue
            is_paid = OrderStatusEnum(status) in paid_statuses
            if local_day == today:
                today_orders += 1
                if is_paid:
                    today_sales += int(total_price)
                    today_paid += 1
            if not is_paid:
                continue
            bucket = weekly[(local_day - window_start_date).days // 7]
            bucket.total_sales += int(total_price)
            bucket.order_count += 1

        return SalesSummary(
            timezone=zone.key,
            as_of=current,
            today_sales=today_sales,
            today_paid_orders=today_paid,
            today_orders=today_orders,
            weekly=weekly,
        )


def _ensure_aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; they are stored as UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _week_label(start: date) -> str:
    return f"{start.month}월 {math.ceil(start.day / 7)}주"


__all__ = ["RevenueAggregator", "SalesSummary", "WeeklySales"]
