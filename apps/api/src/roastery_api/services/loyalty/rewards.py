"""Purchase-confirmation rewards and administrative point grants."""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from roastery_api.core.settings import settings
from roastery_api.models.order import Order, OrderStatusEnum
from roastery_api.observability.loyalty import LoyaltyObservabilityStore, get_loyalty_store
from roastery_api.services.errors import ValidationFailedError
from roastery_api.services.loyalty.ledger import GrantAllReport, LedgerAppendResult, PointLedger


def purchase_reward_amount(total_price: int, rate_percent: int | None = None) -> int:
    """Reward points for a confirmed purchase, rounded up to a whole point."""

    rate = settings.purchase_reward_rate_percent if rate_percent is None else rate_percent
    if total_price <= 0 or rate <= 0:
        return 0
    return -(-total_price * rate // 100)


def purchase_reward_key(order_id: UUID) -> str:
    return f"purchase-confirmation:{order_id}"


@dataclass(slots=True)
class RewardIssuance:
    order_id: UUID
    member_id: UUID
    amount: int
    created: bool
    entry_id: UUID | None = None


class RewardIssuer:
    """Issues ledger entries for purchase confirmations and admin grants.

    Purchase rewards are keyed per order, so replays after a timeout or a
    crash between the status write and the ledger write never double credit.
    """

    def __init__(
        self,
        db_session: AsyncSession,
        *,
        ledger: PointLedger | None = None,
        store: LoyaltyObservabilityStore | None = None,
    ) -> None:
        self._db = db_session
        self._ledger = ledger or PointLedger(db_session)
        self._store = store or get_loyalty_store()

    async def issue_purchase_reward(self, order: Order) -> RewardIssuance:
        """Credit the member for a confirmed purchase and commit."""

        if order.status != OrderStatusEnum.PURCHASE_COMPLETED:
            raise ValidationFailedError(
                f"Order {order.id} is not purchase-completed",
                order_id=str(order.id),
                status=order.status.value,
            )
        ensure_total_consistent(order)

        order_id = order.id
        member_id = order.member_id
        amount = purchase_reward_amount(int(order.total_price))
        if amount == 0:
            self._store.record_reward("skipped")
            logger.info("Purchase reward skipped for zero amount", order_id=str(order_id))
            return RewardIssuance(order_id=order_id, member_id=member_id, amount=0, created=False)

        result = await self._ledger.grant(
            member_id,
            amount,
            settings.purchase_reward_reason_template.format(order_id=order_id),
            order_id=order_id,
            idempotency_key=purchase_reward_key(order_id),
        )
        await self._db.commit()

        if result.created:
            self._store.record_reward("issued", points=amount)
        else:
            self._store.record_reward("duplicate")
        logger.info(
            "Purchase reward processed",
            order_id=str(order_id),
            member_id=str(member_id),
            amount=result.entry.amount,
            created=result.created,
        )
        return RewardIssuance(
            order_id=order_id,
            member_id=member_id,
            amount=int(result.entry.amount),
            created=result.created,
            entry_id=result.entry.id,
        )

    async def grant_manual(self, member_id: UUID, amount: int, reason: str) -> LedgerAppendResult:
        result = await self._ledger.grant(member_id, amount, reason)
        await self._db.commit()
        self._store.record_reward("manual", points=amount)
        return result

    async def grant_all(self, amount: int, reason: str) -> GrantAllReport:
        report = await self._ledger.grant_to_all(amount, reason)
        self._store.record_reward("bulk_grant_succeeded", points=amount * report.success_count)
        if report.failures:
            self._store.record_reward("bulk_grant_failed")
        return report


def ensure_total_consistent(order: Order) -> None:
    """Reject money-bearing work on an order whose total disagrees with its items."""

    expected = order.computed_total()
    if int(order.total_price) != expected:
        logger.error(
            "Order total does not match its items",
            order_id=str(order.id),
            total_price=order.total_price,
            computed_total=expected,
        )
        raise ValidationFailedError(
            f"Order {order.id} total {order.total_price} does not match item sum {expected}",
            order_id=str(order.id),
        )


__all__ = [
    "RewardIssuance",
    "RewardIssuer",
    "ensure_total_consistent",
    "purchase_reward_amount",
    "purchase_reward_key",
]
