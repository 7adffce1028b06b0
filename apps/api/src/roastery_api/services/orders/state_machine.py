"""Order state machine orchestration and audit logging."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from uuid import UUID

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from roastery_api.models.order import Order, OrderStatusEnum
from roastery_api.models.order_state_event import (
    OrderStateActorTypeEnum,
    OrderStateEvent,
    OrderStateEventTypeEnum,
)
from roastery_api.observability.loyalty import LoyaltyObservabilityStore, get_loyalty_store
from roastery_api.observability.tracing import get_tracer
from roastery_api.services.errors import (
    CommerceError,
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    ValidationFailedError,
)
from roastery_api.services.loyalty.grades import GradeReconciler, GradeReconciliation
from roastery_api.services.loyalty.rewards import RewardIssuance, RewardIssuer

_tracer = get_tracer("orders")


@dataclass(frozen=True, slots=True)
class Actor:
    """Who is asking: a member acting on their own orders, an admin, or the system."""

    role: OrderStateActorTypeEnum
    member_id: UUID | None = None

    @classmethod
    def member(cls, member_id: UUID) -> "Actor":
        return cls(role=OrderStateActorTypeEnum.MEMBER, member_id=member_id)

    @classmethod
    def admin(cls, member_id: UUID | None = None) -> "Actor":
        return cls(role=OrderStateActorTypeEnum.ADMIN, member_id=member_id)

    @classmethod
    def system(cls) -> "Actor":
        return cls(role=OrderStateActorTypeEnum.SYSTEM)

    @property
    def is_admin(self) -> bool:
        return self.role in (OrderStateActorTypeEnum.ADMIN, OrderStateActorTypeEnum.SYSTEM)

    @property
    def actor_id(self) -> str | None:
        return str(self.member_id) if self.member_id else None


@dataclass(slots=True)
class TransitionResult:
    order: Order
    previous_status: OrderStatusEnum
    changed: bool
    event: OrderStateEvent | None = None
    reward: RewardIssuance | None = None
    grade: GradeReconciliation | None = None
    warnings: list[str] = field(default_factory=list)


def evaluate_guard(
    current: OrderStatusEnum,
    target: OrderStatusEnum,
    actor: Actor,
) -> str | None:
    """Return the reason a transition is refused, or ``None`` when it is allowed.

    Admins may set any status. Members may only cancel before shipping and
    confirm purchase after delivery.
    """

    if actor.is_admin:
        return None
    if target == OrderStatusEnum.CANCELLED:
        if current in OrderStatusEnum.member_cancellable():
            return None
        return "orders can only be cancelled before shipping"
    if target == OrderStatusEnum.PURCHASE_COMPLETED:
        if current == OrderStatusEnum.DELIVERED:
            return None
        return "purchase can only be confirmed after delivery"
    return "members may only cancel or confirm purchase"


def is_non_forward(current: OrderStatusEnum, target: OrderStatusEnum) -> bool:
    """True for moves that leave a terminal state or step back along fulfilment."""

    if current.is_terminal:
        return True
    current_rank = current.progress_rank
    target_rank = target.progress_rank
    if current_rank is None or target_rank is None:
        return False
    return target_rank < current_rank


def coerce_status(value: OrderStatusEnum | str) -> OrderStatusEnum:
    if isinstance(value, OrderStatusEnum):
        return value
    try:
        return OrderStatusEnum.parse(value)
    except (AttributeError, ValueError) as exc:
        raise ValidationFailedError(f"Unknown order status: {value!r}", status=str(value)) from exc


class OrderStateMachine:
    """Encapsulates order status transitions, audit logging and their side effects.

    The status write is a compare-and-set on the status that was read, so two
    racing writers cannot both succeed. Side effects (purchase reward, grade
    refresh) run after the status commit; their failures are reported as
    warnings and never revert the transition.
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        reward_issuer: RewardIssuer | None = None,
        grade_reconciler: GradeReconciler | None = None,
        store: LoyaltyObservabilityStore | None = None,
    ) -> None:
        self._session = session
        self._store = store or get_loyalty_store()
        self._rewards = reward_issuer or RewardIssuer(session, store=self._store)
        self._grades = grade_reconciler or GradeReconciler(session, store=self._store)

    async def preflight(
        self,
        order_id: UUID,
        target_status: OrderStatusEnum | str,
        actor: Actor,
    ) -> Order:
        """Run every check ``transition`` would, without writing anything."""

        target = coerce_status(target_status)
        order = await self._get_order(order_id, actor)
        if order.status != target:
            reason = evaluate_guard(order.status, target, actor)
            if reason:
                raise InvalidTransitionError(order.status, target, reason=reason)
        return order

    async def transition(
        self,
        order_id: UUID,
        target_status: OrderStatusEnum | str,
        actor: Actor,
        *,
        notes: str | None = None,
        metadata: dict | None = None,
    ) -> TransitionResult:
        with _tracer.start_as_current_span("orders.transition") as span:
            span.set_attribute("order.id", str(order_id))
            span.set_attribute("order.actor_type", actor.role.value)
            result = await self._transition(order_id, target_status, actor, notes=notes, metadata=metadata)
            span.set_attribute("order.changed", result.changed)
            span.set_attribute("order.warnings", len(result.warnings))
            return result

    async def _transition(
        self,
        order_id: UUID,
        target_status: OrderStatusEnum | str,
        actor: Actor,
        *,
        notes: str | None,
        metadata: dict | None,
    ) -> TransitionResult:
        target = coerce_status(target_status)
        order = await self._get_order(order_id, actor)
        current = order.status

        if target == current:
            logger.debug(
                "Order already in requested status",
                order_id=str(order_id),
                status=current.value,
            )
            outcome = TransitionResult(order=order, previous_status=current, changed=False)
            if current == OrderStatusEnum.PURCHASE_COMPLETED:
                # Re-confirming retries a reward that failed after the status commit.
                await self._issue_reward(outcome, order_id=order_id, member_id=order.member_id)
                outcome.order = await self._reload(order_id)
            return outcome

        reason = evaluate_guard(current, target, actor)
        if reason:
            raise InvalidTransitionError(current, target, reason=reason)

        non_forward = is_non_forward(current, target)
        stmt = (
            update(Order)
            .where(Order.id == order_id, Order.status == current)
            .values(status=target, updated_at=datetime.now(timezone.utc))
        )
        result = await self._session.execute(stmt)
        if result.rowcount != 1:
            await self._session.rollback()
            raise ConflictError(
                f"Order {order_id} changed status concurrently",
                order_id=str(order_id),
                observed_status=current.value,
            )

        event_metadata = dict(metadata or {})
        if non_forward:
            event_metadata["non_forward"] = True
        event = OrderStateEvent(
            order_id=order_id,
            event_type=OrderStateEventTypeEnum.STATE_CHANGE,
            actor_type=actor.role,
            actor_id=actor.actor_id,
            notes=notes,
            metadata_json=event_metadata,
            from_status=current.value,
            to_status=target.value,
        )
        self._session.add(event)
        await self._session.commit()

        if non_forward:
            logger.warning(
                "Non-forward order transition applied",
                order_id=str(order_id),
                from_status=current.value,
                to_status=target.value,
                actor_type=actor.role.value,
                actor_id=actor.actor_id,
            )
        else:
            logger.info(
                "Order status transitioned",
                order_id=str(order_id),
                from_status=current.value,
                to_status=target.value,
                actor_type=actor.role.value,
            )

        order = await self._reload(order_id)
        outcome = TransitionResult(order=order, previous_status=current, changed=True, event=event)
        member_id = order.member_id
        side_effects = False
        if target == OrderStatusEnum.PURCHASE_COMPLETED:
            side_effects = True
            await self._issue_reward(outcome, order_id=order_id, member_id=member_id)
        if current.counts_toward_spend != target.counts_toward_spend:
            side_effects = True
            await self._refresh_grade(outcome, order_id=order_id, member_id=member_id)
        if side_effects:
            # Side effects may roll back, which expires everything loaded so far.
            outcome.order = await self._reload(order_id)
            await self._session.refresh(event)
        return outcome

    async def record_event(
        self,
        *,
        order_id: UUID,
        event_type: OrderStateEventTypeEnum,
        actor: Actor,
        notes: str | None = None,
        metadata: dict | None = None,
    ) -> OrderStateEvent:
        """Insert a non-state-change timeline entry and commit."""

        event = OrderStateEvent(
            order_id=order_id,
            event_type=event_type,
            actor_type=actor.role,
            actor_id=actor.actor_id,
            notes=notes,
            metadata_json=metadata or {},
        )
        self._session.add(event)
        await self._session.commit()
        logger.info(
            "Order timeline event recorded",
            order_id=str(order_id),
            event_type=event_type.value,
            actor_type=actor.role.value,
        )
        return event

    async def list_events(self, order_id: UUID, actor: Actor) -> list[OrderStateEvent]:
        """Return the order timeline, newest first."""

        await self._get_order(order_id, actor)
        stmt = (
            select(OrderStateEvent)
            .where(OrderStateEvent.order_id == order_id)
            .order_by(OrderStateEvent.created_at.desc(), OrderStateEvent.id.desc())
        )
        result = await self._session.execute(stmt)
        return list(result.scalars())

    async def _issue_reward(self, outcome: TransitionResult, *, order_id: UUID, member_id: UUID) -> None:
        try:
            outcome.reward = await self._rewards.issue_purchase_reward(outcome.order)
        except (CommerceError, SQLAlchemyError) as exc:
            await self._session.rollback()
            message = _describe(exc)
            outcome.warnings.append(f"Purchase reward was not issued: {message}")
            self._store.record_reward("failed")
            logger.error(
                "Purchase reward failed after status commit",
                order_id=str(order_id),
                member_id=str(member_id),
                error=message,
            )
            await self._record_quietly(order_id, OrderStateEventTypeEnum.REWARD_FAILED, notes=message)
            return

        if outcome.reward.created:
            await self._record_quietly(
                order_id,
                OrderStateEventTypeEnum.REWARD_ISSUED,
                metadata={"amount": outcome.reward.amount},
            )

    async def _refresh_grade(self, outcome: TransitionResult, *, order_id: UUID, member_id: UUID) -> None:
        try:
            outcome.grade = await self._grades.reconcile(member_id)
        except (CommerceError, SQLAlchemyError) as exc:
            await self._session.rollback()
            message = _describe(exc)
            outcome.warnings.append(f"Grade was not refreshed: {message}")
            logger.warning(
                "Grade refresh after transition failed",
                order_id=str(order_id),
                member_id=str(member_id),
                error=message,
            )

    async def _record_quietly(
        self,
        order_id: UUID,
        event_type: OrderStateEventTypeEnum,
        *,
        notes: str | None = None,
        metadata: dict | None = None,
    ) -> None:
        try:
            await self.record_event(
                order_id=order_id,
                event_type=event_type,
                actor=Actor.system(),
                notes=notes,
                metadata=metadata,
            )
        except SQLAlchemyError as exc:
            await self._session.rollback()
            logger.error(
                "Failed to record order timeline event",
                order_id=str(order_id),
                event_type=event_type.value,
                error=str(exc),
            )

    async def _get_order(self, order_id: UUID, actor: Actor) -> Order:
        order = await self._reload(order_id)
        if not actor.is_admin and order.member_id != actor.member_id:
            # Other members' orders are indistinguishable from missing ones.
            raise NotFoundError(f"Order {order_id} not found", order_id=str(order_id))
        return order

    async def _reload(self, order_id: UUID) -> Order:
        stmt = (
            select(Order)
            .options(selectinload(Order.items))
            .where(Order.id == order_id)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        order = result.scalar_one_or_none()
        if not order:
            raise NotFoundError(f"Order {order_id} not found", order_id=str(order_id))
        return order


def _describe(exc: Exception) -> str:
    if isinstance(exc, CommerceError):
        return exc.message
    return f"order store unavailable ({exc.__class__.__name__})"


__all__ = [
    "Actor",
    "OrderStateMachine",
    "TransitionResult",
    "coerce_status",
    "evaluate_guard",
    "is_non_forward",
]
