"""Append-only point ledger."""

from __future__ import annotations

from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Index, Integer, String, func
from sqlalchemy.dialects.postgresql import UUID

from roastery_api.db.base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PointLedgerEntry(Base):
    """One signed point movement; positive grants, negative consumption.

    Rows are never updated or deleted, so a member's balance is always the sum
    of their entries. ``order_id`` is a plain reference rather than a foreign
    key so administrative order deletion leaves the ledger untouched.
    """

    __tablename__ = "point_ledger"
    __table_args__ = (
        CheckConstraint("amount <> 0", name="ck_point_ledger_amount_non_zero"),
        Index("ix_point_ledger_member_created", "member_id", "created_at"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    member_id = Column(UUID(as_uuid=True), ForeignKey("members.id", ondelete="RESTRICT"), nullable=False)
    amount = Column(Integer, nullable=False)
    reason = Column(String(255), nullable=False)
    order_id = Column(UUID(as_uuid=True), nullable=True, index=True)
    idempotency_key = Column(String(128), nullable=True, unique=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False)
