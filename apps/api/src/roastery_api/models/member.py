from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from sqlalchemy import Column, DateTime, Enum as SqlEnum, String, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from roastery_api.db.base import Base


class MemberGradeEnum(str, Enum):
    SILVER = "SILVER"
    GOLD = "GOLD"
    VIP = "VIP"


class MemberStatusEnum(str, Enum):
    ACTIVE = "ACTIVE"
    DORMANT = "DORMANT"
    WITHDRAWN = "WITHDRAWN"


class MemberRoleEnum(str, Enum):
    USER = "USER"
    ADMIN = "ADMIN"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Member(Base):
    __tablename__ = "members"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    email = Column(String, nullable=False, unique=True, index=True)
    name = Column(String, nullable=False)
    phone = Column(String(32), nullable=True)
    # Cache of the grade implied by valid spend; written only by GradeReconciler.
    grade = Column(
        SqlEnum(MemberGradeEnum, name="member_grade_enum"),
        nullable=False,
        default=MemberGradeEnum.SILVER,
        server_default=MemberGradeEnum.SILVER.value,
    )
    status = Column(
        SqlEnum(MemberStatusEnum, name="member_status_enum"),
        nullable=False,
        default=MemberStatusEnum.ACTIVE,
        server_default=MemberStatusEnum.ACTIVE.value,
    )
    role = Column(
        SqlEnum(MemberRoleEnum, name="member_role_enum"),
        nullable=False,
        default=MemberRoleEnum.USER,
        server_default=MemberRoleEnum.USER.value,
    )
    grade_updated_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        default=_utcnow,
        server_default=func.now(),
        onupdate=_utcnow,
        nullable=False,
    )

    orders = relationship("Order", back_populates="member")
