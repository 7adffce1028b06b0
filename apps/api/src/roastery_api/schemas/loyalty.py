from __future__ import annotations

from datetime import date, datetime
from uuid import UUID

from pydantic import Field

from roastery_api.schemas.common import CamelModel


class PointGrantRequest(CamelModel):
    member_id: UUID
    amount: int
    reason: str = Field(..., max_length=255)


class PointGrantAllRequest(CamelModel):
    amount: int
    reason: str = Field(..., max_length=255)


class PointEntryResponse(CamelModel):
    id: UUID
    member_id: UUID
    amount: int
    reason: str
    order_id: UUID | None = None
    created_at: datetime


class PointGrantResponse(CamelModel):
    entry: PointEntryResponse
    balance: int


class PointGrantFailureResponse(CamelModel):
    member_id: UUID
    kind: str
    message: str


class PointGrantAllResponse(CamelModel):
    success_count: int
    failures: list[PointGrantFailureResponse] = Field(default_factory=list)


class PointBalanceResponse(CamelModel):
    member_id: UUID
    balance: int


class PointHistoryResponse(CamelModel):
    entries: list[PointEntryResponse]
    total: int
    total_pages: int
    current_page: int
    limit: int


class MemberGradeResponse(CamelModel):
    member_id: UUID
    grade: str
    previous_grade: str
    changed: bool
    valid_spend: int


class WeeklySalesResponse(CamelModel):
    label: str
    start_date: date
    end_date: date
    total_sales: int
    order_count: int


class SalesSummaryResponse(CamelModel):
    timezone: str
    as_of: datetime
    today_sales: int
    today_paid_orders: int
    today_orders: int
    weekly: list[WeeklySalesResponse]


__all__ = [
    "MemberGradeResponse",
    "PointBalanceResponse",
    "PointEntryResponse",
    "PointGrantAllRequest",
    "PointGrantAllResponse",
    "PointGrantFailureResponse",
    "PointGrantRequest",
    "PointGrantResponse",
    "PointHistoryResponse",
    "SalesSummaryResponse",
    "WeeklySalesResponse",
]
