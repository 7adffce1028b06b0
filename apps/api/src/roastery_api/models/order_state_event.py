"""Order timeline audit log models."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from sqlalchemy import Column, DateTime, Enum as SqlEnum, ForeignKey, Index, JSON, String, Text, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from roastery_api.db.base import Base


class OrderStateEventTypeEnum(str, Enum):
    """Supported order timeline event categories."""

    STATE_CHANGE = "state_change"
    ITEM_CORRECTION = "item_correction"
    REWARD_ISSUED = "reward_issued"
    REWARD_FAILED = "reward_failed"


class OrderStateActorTypeEnum(str, Enum):
    """Who caused the timeline entry."""

    MEMBER = "member"
    ADMIN = "admin"
    SYSTEM = "system"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OrderStateEvent(Base):
    """Audit log entry for every accepted transition, correction and reward outcome."""

    __tablename__ = "order_state_events"
    __table_args__ = (Index("ix_order_state_events_order_id_created_at", "order_id", "created_at"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    order_id = Column(UUID(as_uuid=True), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False)
    event_type = Column(
        SqlEnum(OrderStateEventTypeEnum, name="order_state_event_type_enum"),
        nullable=False,
    )
    actor_type = Column(
        SqlEnum(OrderStateActorTypeEnum, name="order_state_actor_type_enum"),
        nullable=True,
    )
    actor_id = Column(String(255), nullable=True)
    from_status = Column(String(64), nullable=True)
    to_status = Column(String(64), nullable=True)
    notes = Column(Text, nullable=True)
    metadata_json = Column("metadata", JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False)

    order = relationship("Order", back_populates="state_events")
