from __future__ import annotations

from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import Field

from roastery_api.schemas.common import CamelModel

BulkModeLiteral = Literal["lenient", "strict"]


class OrderStatusUpdate(CamelModel):
    """Request body for a single status change."""

    status: str = Field(..., description="Target order status")
    notes: str | None = Field(default=None, max_length=1000)


class OrderItemCorrectionPayload(CamelModel):
    id: UUID
    sale_price: int | None = None
    quantity: int | None = None


class OrderCorrectionRequest(CamelModel):
    order_items: list[OrderItemCorrectionPayload] = Field(..., min_length=1)


class BulkStatusRequest(CamelModel):
    order_ids: list[UUID] = Field(..., min_length=1)
    status: str
    mode: BulkModeLiteral = "lenient"


class BulkEditEntry(CamelModel):
    order_id: UUID
    order_items: list[OrderItemCorrectionPayload] = Field(..., min_length=1)


class BulkEditRequest(CamelModel):
    edits: list[BulkEditEntry] = Field(..., min_length=1)
    mode: BulkModeLiteral = "lenient"


class OrderItemResponse(CamelModel):
    id: UUID
    product_id: int
    option_id: int | None = None
    product_name: str | None = None
    sale_price: int
    quantity: int


class OrderResponse(CamelModel):
    id: UUID
    member_id: UUID
    status: str
    total_price: int
    used_point: int
    cancellable: bool
    reviewable: bool
    created_at: datetime
    updated_at: datetime
    items: list[OrderItemResponse] = Field(default_factory=list)


class OrderListResponse(CamelModel):
    orders: list[OrderResponse]
    total: int
    total_pages: int
    current_page: int
    limit: int


class RewardSummary(CamelModel):
    amount: int
    created: bool


class GradeSummary(CamelModel):
    grade: str
    previous_grade: str
    changed: bool
    valid_spend: int


class OrderTransitionResponse(CamelModel):
    order: OrderResponse
    previous_status: str
    changed: bool
    reward: RewardSummary | None = None
    grade: GradeSummary | None = None
    warnings: list[str] = Field(default_factory=list)


class OrderCorrectionResponse(CamelModel):
    order: OrderResponse
    previous_total: int
    new_total: int


class OrderStateEventResponse(CamelModel):
    """Timeline entry describing a state change, correction or reward outcome."""

    id: UUID
    event_type: str
    actor_type: str | None = None
    actor_id: str | None = None
    from_status: str | None = None
    to_status: str | None = None
    notes: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime


class BulkFailureResponse(CamelModel):
    id: UUID
    kind: str
    message: str


class BulkReportResponse(CamelModel):
    mode: BulkModeLiteral
    aborted: bool
    succeeded: list[UUID]
    failed: list[BulkFailureResponse]
    warnings: dict[str, list[str]] = Field(default_factory=dict)


__all__ = [
    "BulkEditEntry",
    "BulkEditRequest",
    "BulkFailureResponse",
    "BulkReportResponse",
    "BulkStatusRequest",
    "GradeSummary",
    "OrderCorrectionRequest",
    "OrderCorrectionResponse",
    "OrderItemCorrectionPayload",
    "OrderItemResponse",
    "OrderListResponse",
    "OrderResponse",
    "OrderStateEventResponse",
    "OrderStatusUpdate",
    "OrderTransitionResponse",
    "RewardSummary",
]
