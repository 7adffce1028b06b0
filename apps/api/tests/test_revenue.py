from __future__ import annotations

from datetime import date, datetime, timezone
from uuid import uuid4

import pytest

from roastery_api.models.order import OrderStatusEnum
from roastery_api.services.orders.revenue import RevenueAggregator

S = OrderStatusEnum


def _utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_valid_spend_excludes_cancelled_and_returned(session_factory, make_member, make_order):
    member = await make_member()
    other = await make_member()
    await make_order(member.id, status=S.PENDING_PAYMENT, items=[(10_000, 2)])
    await make_order(member.id, status=S.DELIVERED, items=[(35_000, 1)])
    await make_order(member.id, status=S.CANCELLED, items=[(500_000, 1)])
    await make_order(member.id, status=S.RETURNED, items=[(80_000, 1)])
    await make_order(other.id, status=S.DELIVERED, items=[(99_000, 1)])

    async with session_factory() as session:
        aggregator = RevenueAggregator(session)
        assert await aggregator.compute_valid_spend(member.id) == 55_000
        assert await aggregator.compute_valid_spend(uuid4()) == 0
        many = await aggregator.compute_valid_spend_many([member.id, other.id])

    assert many == {member.id: 55_000, other.id: 99_000}


@pytest.mark.asyncio
async def test_sales_summary_buckets_by_local_day(session_factory, make_member, make_order):
    member = await make_member()
    # 2026-03-18 12:00 in Seoul.
    now = _utc(2026, 3, 18, 3, 0)

    await make_order(member.id, status=S.PAYMENT_COMPLETED, items=[(30_000, 1)], created_at=_utc(2026, 3, 18, 1, 0))
    await make_order(member.id, status=S.PENDING_PAYMENT, items=[(5_000, 1)], created_at=_utc(2026, 3, 18, 2, 0))
    # Previous UTC day, but already the 18th in Seoul.
    await make_order(member.id, status=S.DELIVERED, items=[(20_000, 1)], created_at=_utc(2026, 3, 17, 16, 0))
    await make_order(member.id, status=S.CANCELLED, items=[(40_000, 1)], created_at=_utc(2026, 3, 18, 0, 30))
    await make_order(
        member.id, status=S.PURCHASE_COMPLETED, items=[(50_000, 1)], created_at=_utc(2026, 3, 17, 14, 0)
    )
    await make_order(member.id, status=S.PREPARING, items=[(70_000, 1)], created_at=_utc(2026, 3, 5, 3, 0))
    # Outside the two-week window.
    await make_order(member.id, status=S.PAYMENT_COMPLETED, items=[(90_000, 1)], created_at=_utc(2026, 3, 4, 3, 0))

    async with session_factory() as session:
        summary = await RevenueAggregator(session).sales_summary(now=now, weeks=2, tz_name="Asia/Seoul")

    assert summary.timezone == "Asia/Seoul"
    assert summary.today_sales == 50_000
    assert summary.today_paid_orders == 2
    assert summary.today_orders == 4

    first, last = summary.weekly
    assert (first.start_date, first.end_date) == (date(2026, 3, 5), date(2026, 3, 11))
    assert (last.start_date, last.end_date) == (date(2026, 3, 12), date(2026, 3, 18))
    assert first.label == "3월 1주"
    assert last.label == "3월 2주"
    assert (first.total_sales, first.order_count) == (70_000, 1)
    assert (last.total_sales, last.order_count) == (100_000, 3)


@pytest.mark.asyncio
async def test_sales_summary_with_no_orders(session_factory):
    async with session_factory() as session:
        summary = await RevenueAggregator(session).sales_summary(now=_utc(2026, 1, 2, 0, 0), weeks=3, tz_name="UTC")

    assert summary.today_sales == 0
    assert summary.today_orders == 0
    assert len(summary.weekly) == 3
    assert summary.weekly[-1].end_date == date(2026, 1, 2)
    assert all(week.total_sales == 0 for week in summary.weekly)
