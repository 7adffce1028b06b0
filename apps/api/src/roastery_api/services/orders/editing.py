"""Administrative order corrections and removal."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence
from uuid import UUID

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from roastery_api.models.order import Order, OrderStatusEnum
from roastery_api.models.order_state_event import OrderStateEvent, OrderStateEventTypeEnum
from roastery_api.services.errors import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ValidationFailedError,
)
from roastery_api.services.loyalty.rewards import ensure_total_consistent
from roastery_api.services.orders.state_machine import Actor

_LOCKED_STATUSES = frozenset(
    {
        OrderStatusEnum.CANCELLED,
        OrderStatusEnum.RETURNED,
        OrderStatusEnum.PURCHASE_COMPLETED,
    }
)


@dataclass(frozen=True, slots=True)
class ItemCorrection:
    item_id: UUID
    sale_price: int | None = None
    quantity: int | None = None


@dataclass(slots=True)
class CorrectionResult:
    order: Order
    previous_total: int
    new_total: int


class OrderEditor:
    """Price and quantity corrections that keep ``total_price`` equal to the item sum."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def preflight(
        self,
        order_id: UUID,
        corrections: Sequence[ItemCorrection],
        actor: Actor,
    ) -> Order:
        _require_admin(actor)
        order = await self._get_order(order_id)
        validate_corrections(order, corrections)
        return order

    async def correct_items(
        self,
        order_id: UUID,
        corrections: Sequence[ItemCorrection],
        actor: Actor,
    ) -> CorrectionResult:
        """Apply corrections and recompute the order total in one transaction."""

        order = await self.preflight(order_id, corrections, actor)
        observed_status = order.status
        previous_total = int(order.total_price)

        items = {item.id: item for item in order.items}
        changes = []
        for correction in corrections:
            item = items[correction.item_id]
            change = {"item_id": str(item.id)}
            if correction.sale_price is not None and correction.sale_price != item.sale_price:
                change["sale_price"] = [item.sale_price, correction.sale_price]
                item.sale_price = correction.sale_price
            if correction.quantity is not None and correction.quantity != item.quantity:
                change["quantity"] = [item.quantity, correction.quantity]
                item.quantity = correction.quantity
            if len(change) > 1:
                changes.append(change)

        new_total = order.computed_total()
        await self._session.flush()

        # Guard against a concurrent transition into a locked status.
        result = await self._session.execute(
            update(Order)
            .where(Order.id == order_id, Order.status == observed_status)
            .values(total_price=new_total)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self._session.rollback()
            raise ConflictError(
                f"Order {order_id} changed status while being corrected",
                order_id=str(order_id),
            )

        self._session.add(
            OrderStateEvent(
                order_id=order_id,
                event_type=OrderStateEventTypeEnum.ITEM_CORRECTION,
                actor_type=actor.role,
                actor_id=actor.actor_id,
                metadata_json={
                    "previous_total": previous_total,
                    "new_total": new_total,
                    "items": changes,
                },
            )
        )
        await self._session.commit()
        logger.info(
            "Order items corrected",
            order_id=str(order_id),
            previous_total=previous_total,
            new_total=new_total,
            changed_items=len(changes),
            actor_id=actor.actor_id,
        )

        order = await self._get_order(order_id)
        return CorrectionResult(order=order, previous_total=previous_total, new_total=new_total)

    async def delete_order(self, order_id: UUID, actor: Actor) -> None:
        """Remove an order with its items and timeline. Ledger entries are kept."""

        _require_admin(actor)
        order = await self._get_order(order_id)
        status = order.status.value
        total_price = int(order.total_price)
        await self._session.delete(order)
        await self._session.commit()
        logger.warning(
            "Order deleted",
            order_id=str(order_id),
            status=status,
            total_price=total_price,
            actor_id=actor.actor_id,
        )

    async def _get_order(self, order_id: UUID) -> Order:
        stmt = (
            select(Order)
            .options(selectinload(Order.items), selectinload(Order.state_events))
            .where(Order.id == order_id)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        order = result.scalar_one_or_none()
        if not order:
            raise NotFoundError(f"Order {order_id} not found", order_id=str(order_id))
        return order


def validate_corrections(order: Order, corrections: Sequence[ItemCorrection]) -> None:
    """Synchronous checks shared by single and bulk corrections."""

    if order.status in _LOCKED_STATUSES:
        raise ValidationFailedError(
            f"Order {order.id} is {order.status.value}; its items can no longer be corrected",
            order_id=str(order.id),
        )
    ensure_total_consistent(order)
    if not corrections:
        raise ValidationFailedError("At least one item correction is required", order_id=str(order.id))

    item_ids = {item.id for item in order.items}
    seen: set[UUID] = set()
    for correction in corrections:
        if correction.item_id not in item_ids:
            raise NotFoundError(
                f"Item {correction.item_id} does not belong to order {order.id}",
                order_id=str(order.id),
                item_id=str(correction.item_id),
            )
        if correction.item_id in seen:
            raise ValidationFailedError(f"Item {correction.item_id} corrected more than once")
        seen.add(correction.item_id)
        if correction.sale_price is None and correction.quantity is None:
            raise ValidationFailedError(f"Item {correction.item_id} has nothing to correct")
        if correction.quantity is not None and (
            isinstance(correction.quantity, bool) or correction.quantity <= 0
        ):
            raise ValidationFailedError("Quantity must be greater than zero", item_id=str(correction.item_id))
        if correction.sale_price is not None and (
            isinstance(correction.sale_price, bool) or correction.sale_price < 0
        ):
            raise ValidationFailedError("Sale price must not be negative", item_id=str(correction.item_id))


def _require_admin(actor: Actor) -> None:
    if not actor.is_admin:
        raise ForbiddenError("Only administrators may edit or delete orders")


__all__ = ["CorrectionResult", "ItemCorrection", "OrderEditor", "validate_corrections"]
