"""Apply one operation across many orders with per-item reporting."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import AsyncIterator, Mapping, Protocol, Sequence
from uuid import UUID

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from roastery_api.core.settings import settings
from roastery_api.models.order import OrderStatusEnum
from roastery_api.observability.loyalty import LoyaltyObservabilityStore, get_loyalty_store
from roastery_api.services.errors import CommerceError, UpstreamFailureError, ValidationFailedError
from roastery_api.services.orders.editing import ItemCorrection, OrderEditor
from roastery_api.services.orders.state_machine import Actor, OrderStateMachine, coerce_status


class BulkMode(str, Enum):
    LENIENT = "lenient"
    STRICT = "strict"


class BulkOperation(Protocol):
    name: str

    async def preflight(self, session: AsyncSession, order_id: UUID) -> None: ...

    async def apply(self, session: AsyncSession, order_id: UUID) -> list[str]: ...


@dataclass(slots=True)
class StatusTransitionOperation:
    target_status: OrderStatusEnum
    actor: Actor
    name: str = "status_transition"

    def __post_init__(self) -> None:
        self.target_status = coerce_status(self.target_status)

    async def preflight(self, session: AsyncSession, order_id: UUID) -> None:
        await OrderStateMachine(session).preflight(order_id, self.target_status, self.actor)

    async def apply(self, session: AsyncSession, order_id: UUID) -> list[str]:
        result = await OrderStateMachine(session).transition(order_id, self.target_status, self.actor)
        return list(result.warnings)


@dataclass(slots=True)
class ItemCorrectionOperation:
    corrections_by_order: Mapping[UUID, Sequence[ItemCorrection]]
    actor: Actor
    name: str = "item_correction"

    def _corrections_for(self, order_id: UUID) -> Sequence[ItemCorrection]:
        corrections = self.corrections_by_order.get(order_id)
        if not corrections:
            raise ValidationFailedError(f"No corrections supplied for order {order_id}", order_id=str(order_id))
        return corrections

    async def preflight(self, session: AsyncSession, order_id: UUID) -> None:
        await OrderEditor(session).preflight(order_id, self._corrections_for(order_id), self.actor)

    async def apply(self, session: AsyncSession, order_id: UUID) -> list[str]:
        await OrderEditor(session).correct_items(order_id, self._corrections_for(order_id), self.actor)
        return []


@dataclass(slots=True)
class BulkItemFailure:
    id: UUID
    kind: str
    message: str


@dataclass(slots=True)
class BulkItemOutcome:
    id: UUID
    succeeded: bool
    warnings: list[str] = field(default_factory=list)
    failure: BulkItemFailure | None = None


@dataclass
class BulkReport:
    mode: BulkMode
    succeeded: list[UUID] = field(default_factory=list)
    failed: list[BulkItemFailure] = field(default_factory=list)
    warnings: dict[UUID, list[str]] = field(default_factory=dict)
    aborted: bool = False


class BulkOperationCoordinator:
    """Runs an operation order by order, each in its own transaction.

    Lenient mode keeps going after a failure and never undoes applied items.
    Strict mode validates every item first and applies nothing if any fails.
    Callers consuming :meth:`iter_apply` may stop between items; whatever was
    already applied stays applied.
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        max_items: int | None = None,
        store: LoyaltyObservabilityStore | None = None,
    ) -> None:
        self._session = session
        self._max_items = max_items or settings.bulk_operation_max_items
        self._store = store or get_loyalty_store()

    async def apply_bulk(
        self,
        order_ids: Sequence[UUID],
        operation: BulkOperation,
        *,
        mode: BulkMode | str = BulkMode.LENIENT,
    ) -> BulkReport:
        mode = BulkMode(mode)
        ids = self._normalize_ids(order_ids)
        report = BulkReport(mode=mode)

        if mode is BulkMode.STRICT:
            report.failed = await self._preflight_all(ids, operation)
            if report.failed:
                report.aborted = True
                logger.warning(
                    "Strict bulk operation aborted during validation",
                    operation=operation.name,
                    requested=len(ids),
                    failed=len(report.failed),
                )
                return report

        async for outcome in self.iter_apply(ids, operation):
            if outcome.succeeded:
                report.succeeded.append(outcome.id)
                if outcome.warnings:
                    report.warnings[outcome.id] = outcome.warnings
            elif outcome.failure is not None:
                report.failed.append(outcome.failure)

        logger.info(
            "Bulk operation completed",
            operation=operation.name,
            mode=mode.value,
            succeeded=len(report.succeeded),
            failed=len(report.failed),
        )
        return report

    async def iter_apply(
        self,
        order_ids: Sequence[UUID],
        operation: BulkOperation,
    ) -> AsyncIterator[BulkItemOutcome]:
        for order_id in self._normalize_ids(order_ids):
            try:
                warnings = await operation.apply(self._session, order_id)
            except (CommerceError, SQLAlchemyError) as exc:
                await self._session.rollback()
                failure = _failure_for(order_id, exc)
                self._store.record_bulk_item(operation.name, "failed")
                logger.warning(
                    "Bulk item failed",
                    operation=operation.name,
                    order_id=str(order_id),
                    kind=failure.kind,
                    error=failure.message,
                )
                yield BulkItemOutcome(id=order_id, succeeded=False, failure=failure)
                continue
            self._store.record_bulk_item(operation.name, "succeeded")
            yield BulkItemOutcome(id=order_id, succeeded=True, warnings=warnings)

    async def _preflight_all(self, ids: Sequence[UUID], operation: BulkOperation) -> list[BulkItemFailure]:
        failures = []
        for order_id in ids:
            try:
                await operation.preflight(self._session, order_id)
            except (CommerceError, SQLAlchemyError) as exc:
                failures.append(_failure_for(order_id, exc))
        if failures:
            await self._session.rollback()
        return failures

    def _normalize_ids(self, order_ids: Sequence[UUID]) -> list[UUID]:
        ids = list(dict.fromkeys(order_ids))
        if not ids:
            raise ValidationFailedError("At least one order id is required")
        if len(ids) > self._max_items:
            raise ValidationFailedError(
                f"Bulk operations are limited to {self._max_items} orders",
                requested=len(ids),
            )
        return ids


def _failure_for(order_id: UUID, exc: Exception) -> BulkItemFailure:
    if isinstance(exc, CommerceError):
        return BulkItemFailure(id=order_id, kind=exc.kind, message=exc.message)
    upstream = UpstreamFailureError(f"Order store unavailable: {exc.__class__.__name__}")
    return BulkItemFailure(id=order_id, kind=upstream.kind, message=upstream.message)


__all__ = [
    "BulkItemFailure",
    "BulkItemOutcome",
    "BulkMode",
    "BulkOperation",
    "BulkOperationCoordinator",
    "BulkReport",
    "ItemCorrectionOperation",
    "StatusTransitionOperation",
]
