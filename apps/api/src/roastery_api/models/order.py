from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from sqlalchemy import CheckConstraint, Column, DateTime, Enum as SqlEnum, ForeignKey, Integer, String, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from roastery_api.db.base import Base


class OrderStatusEnum(str, Enum):
    PENDING = "PENDING"
    PENDING_PAYMENT = "PENDING_PAYMENT"
    PAYMENT_COMPLETED = "PAYMENT_COMPLETED"
    PREPARING = "PREPARING"
    SHIPPING = "SHIPPING"
    DELIVERED = "DELIVERED"
    PURCHASE_COMPLETED = "PURCHASE_COMPLETED"
    CANCELLED = "CANCELLED"
    RETURNED = "RETURNED"

    @classmethod
    def parse(cls, value: str) -> "OrderStatusEnum":
        """Resolve a client-supplied status string (case-insensitive)."""

        return cls(value.strip().upper())

    @classmethod
    def spend_excluded(cls) -> frozenset["OrderStatusEnum"]:
        """Statuses whose totals never count toward a member's valid spend."""

        return _SPEND_EXCLUDED

    @classmethod
    def paid(cls) -> frozenset["OrderStatusEnum"]:
        """Statuses counted as realised revenue on the back-office dashboard."""

        return _PAID

    @classmethod
    def member_cancellable(cls) -> frozenset["OrderStatusEnum"]:
        return _MEMBER_CANCELLABLE

    @property
    def counts_toward_spend(self) -> bool:
        return self not in _SPEND_EXCLUDED

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL

    @property
    def is_reviewable(self) -> bool:
        return self in _REVIEWABLE

    @property
    def progress_rank(self) -> int | None:
        """Position along the fulfilment path; ``None`` for cancel/return exits."""

        return _PROGRESS_RANK.get(self)


_SPEND_EXCLUDED = frozenset({OrderStatusEnum.CANCELLED, OrderStatusEnum.RETURNED})
_TERMINAL = frozenset(
    {OrderStatusEnum.PURCHASE_COMPLETED, OrderStatusEnum.CANCELLED, OrderStatusEnum.RETURNED}
)
_PAID = frozenset(
    {
        OrderStatusEnum.PAYMENT_COMPLETED,
        OrderStatusEnum.PREPARING,
        OrderStatusEnum.SHIPPING,
        OrderStatusEnum.DELIVERED,
        OrderStatusEnum.PURCHASE_COMPLETED,
    }
)
_MEMBER_CANCELLABLE = frozenset(
    {
        OrderStatusEnum.PENDING,
        OrderStatusEnum.PENDING_PAYMENT,
        OrderStatusEnum.PAYMENT_COMPLETED,
        OrderStatusEnum.PREPARING,
    }
)
_REVIEWABLE = frozenset({OrderStatusEnum.DELIVERED, OrderStatusEnum.PURCHASE_COMPLETED})
_PROGRESS_RANK = {
    OrderStatusEnum.PENDING: 0,
    OrderStatusEnum.PENDING_PAYMENT: 0,
    OrderStatusEnum.PAYMENT_COMPLETED: 1,
    OrderStatusEnum.PREPARING: 2,
    OrderStatusEnum.SHIPPING: 3,
    OrderStatusEnum.DELIVERED: 4,
    OrderStatusEnum.PURCHASE_COMPLETED: 5,
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Order(Base):
    __tablename__ = "orders"
    __table_args__ = (
        CheckConstraint("total_price >= 0", name="ck_orders_total_price_non_negative"),
        CheckConstraint("used_point >= 0", name="ck_orders_used_point_non_negative"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    member_id = Column(UUID(as_uuid=True), ForeignKey("members.id", ondelete="RESTRICT"), nullable=False, index=True)
    status = Column(
        SqlEnum(OrderStatusEnum, name="order_status_enum"),
        nullable=False,
        default=OrderStatusEnum.PENDING_PAYMENT,
        server_default=OrderStatusEnum.PENDING_PAYMENT.value,
    )
    total_price = Column(Integer, nullable=False, server_default="0")
    used_point = Column(Integer, nullable=False, default=0, server_default="0")
    created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        default=_utcnow,
        server_default=func.now(),
        onupdate=_utcnow,
        nullable=False,
    )

    member = relationship("Member", back_populates="orders")
    items = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.created_at",
    )
    state_events = relationship("OrderStateEvent", back_populates="order", cascade="all, delete-orphan")

    def computed_total(self) -> int:
        return sum(int(item.sale_price) * int(item.quantity) for item in self.items)


class OrderItem(Base):
    __tablename__ = "order_items"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_order_items_quantity_positive"),
        CheckConstraint("sale_price >= 0", name="ck_order_items_sale_price_non_negative"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    order_id = Column(UUID(as_uuid=True), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, nullable=False)
    option_id = Column(Integer, nullable=True)
    product_name = Column(String, nullable=True)
    sale_price = Column(Integer, nullable=False)
    quantity = Column(Integer, nullable=False, server_default="1")
    created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        default=_utcnow,
        server_default=func.now(),
        onupdate=_utcnow,
        nullable=False,
    )

    order = relationship("Order", back_populates="items")
