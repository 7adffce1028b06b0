"""Read-side order queries for the back-office list and the member order history."""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Sequence
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from roastery_api.core.settings import settings
from roastery_api.models.order import Order, OrderStatusEnum
from roastery_api.services.errors import NotFoundError, ValidationFailedError
from roastery_api.services.orders.state_machine import Actor


class MemberOrderView(str, Enum):
    ORDERS = "orders"
    CANCELLED = "cancelled"


@dataclass(slots=True)
class OrderPage:
    orders: list[Order]
    total: int
    total_pages: int
    current_page: int
    limit: int


class OrderQueryService:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_order(self, order_id: UUID, actor: Actor) -> Order:
        stmt = select(Order).options(selectinload(Order.items)).where(Order.id == order_id)
        result = await self._session.execute(stmt)
        order = result.scalar_one_or_none()
        if order is None or (not actor.is_admin and order.member_id != actor.member_id):
            raise NotFoundError(f"Order {order_id} not found", order_id=str(order_id))
        return order

    async def list_orders(
        self,
        actor: Actor,
        *,
        statuses: Sequence[OrderStatusEnum] | None = None,
        member_id: UUID | None = None,
        view: MemberOrderView | str | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> OrderPage:
        """Admins see every order; members only their own, split into the order and cancelled tabs."""

        if page < 1:
            raise ValidationFailedError("page must be >= 1", page=page)
        if limit < 1 or limit > settings.order_list_max_limit:
            raise ValidationFailedError(
                f"limit must be between 1 and {settings.order_list_max_limit}",
                limit=limit,
            )

        conditions = []
        if actor.is_admin:
            if member_id is not None:
                conditions.append(Order.member_id == member_id)
        else:
            conditions.append(Order.member_id == actor.member_id)
            cancelled_tab = tuple(OrderStatusEnum.spend_excluded())
            if MemberOrderView(view or MemberOrderView.ORDERS) is MemberOrderView.CANCELLED:
                conditions.append(Order.status.in_(cancelled_tab))
            else:
                conditions.append(Order.status.not_in(cancelled_tab))
        if statuses:
            conditions.append(Order.status.in_(list(statuses)))

        total = int(await self._session.scalar(select(func.count(Order.id)).where(*conditions)) or 0)
        stmt = (
            select(Order)
            .options(selectinload(Order.items))
            .where(*conditions)
            .order_by(Order.created_at.desc(), Order.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return OrderPage(
            orders=list(result.scalars().all()),
            total=total,
            total_pages=math.ceil(total / limit),
            current_page=page,
            limit=limit,
        )


__all__ = ["MemberOrderView", "OrderPage", "OrderQueryService"]
