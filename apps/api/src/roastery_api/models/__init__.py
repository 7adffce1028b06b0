"""SQLAlchemy models package."""

from .member import Member, MemberGradeEnum, MemberRoleEnum, MemberStatusEnum  # noqa: F401
from .order import Order, OrderItem, OrderStatusEnum  # noqa: F401
from .order_state_event import (  # noqa: F401
    OrderStateActorTypeEnum,
    OrderStateEvent,
    OrderStateEventTypeEnum,
)
from .point_ledger import PointLedgerEntry  # noqa: F401
