"""Append-only point ledger: grants, consumption, balance and history."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from uuid import UUID

from loguru import logger
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from roastery_api.core.settings import settings
from roastery_api.models.member import Member, MemberStatusEnum
from roastery_api.models.point_ledger import PointLedgerEntry
from roastery_api.services.errors import CommerceError, NotFoundError, UpstreamFailureError, ValidationFailedError

_MAX_REASON_LENGTH = 255


@dataclass(slots=True)
class LedgerAppendResult:
    """Outcome of an append; ``created`` is False when the idempotency key already existed."""

    entry: PointLedgerEntry
    created: bool


@dataclass(slots=True)
class PointHistoryPage:
    entries: list[PointLedgerEntry]
    total: int
    total_pages: int
    current_page: int
    limit: int


@dataclass(slots=True)
class GrantFailure:
    member_id: UUID
    kind: str
    message: str


@dataclass
class GrantAllReport:
    success_count: int = 0
    failures: list[GrantFailure] = field(default_factory=list)

    @property
    def attempted(self) -> int:
        return self.success_count + len(self.failures)


class PointLedger:
    """Point movements for members. Balance is always derived from entries.

    Methods flush but do not commit, except :meth:`grant_to_all`, which commits
    each member independently so one failure cannot undo the others.
    """

    def __init__(self, db_session: AsyncSession) -> None:
        self._db = db_session

    async def grant(
        self,
        member_id: UUID,
        amount: int,
        reason: str,
        *,
        order_id: UUID | None = None,
        idempotency_key: str | None = None,
    ) -> LedgerAppendResult:
        """Append a positive entry. Non-positive amounts are rejected."""

        amount = _coerce_amount(amount)
        if amount <= 0:
            raise ValidationFailedError("Point grants require a positive amount", amount=amount)
        return await self._append(
            member_id,
            amount,
            reason,
            order_id=order_id,
            idempotency_key=idempotency_key,
        )

    async def deduct(
        self,
        member_id: UUID,
        amount: int,
        reason: str,
        *,
        order_id: UUID | None = None,
        idempotency_key: str | None = None,
    ) -> LedgerAppendResult:
        """Append a negative entry for point consumption (e.g. redemption at checkout)."""

        amount = _coerce_amount(amount)
        if amount <= 0:
            raise ValidationFailedError("Point deductions require a positive amount", amount=amount)

        # Row lock serialises concurrent consumption for the member on Postgres.
        await self._require_member(member_id, for_update=True)
        available = await self.balance(member_id)
        if available < amount:
            raise ValidationFailedError(
                f"Insufficient point balance: {available} available, {amount} requested",
                member_id=str(member_id),
            )
        return await self._append(
            member_id,
            -amount,
            reason,
            order_id=order_id,
            idempotency_key=idempotency_key,
            member_checked=True,
        )

    async def balance(self, member_id: UUID) -> int:
        stmt = select(func.coalesce(func.sum(PointLedgerEntry.amount), 0)).where(
            PointLedgerEntry.member_id == member_id
        )
        total = await self._db.scalar(stmt)
        return int(total or 0)

    async def history(
        self,
        member_id: UUID,
        *,
        page: int = 1,
        limit: int | None = None,
    ) -> PointHistoryPage:
        """Return a reverse-chronological page of ledger entries."""

        if page < 1:
            raise ValidationFailedError("page must be >= 1", page=page)
        resolved_limit = limit if limit is not None else settings.point_history_default_limit
        if resolved_limit < 1 or resolved_limit > settings.point_history_max_limit:
            raise ValidationFailedError(
                f"limit must be between 1 and {settings.point_history_max_limit}",
                limit=resolved_limit,
            )

        await self._require_member(member_id)
        total = int(
            await self._db.scalar(
                select(func.count(PointLedgerEntry.id)).where(PointLedgerEntry.member_id == member_id)
            )
            or 0
        )
        stmt = (
            select(PointLedgerEntry)
            .where(PointLedgerEntry.member_id == member_id)
            .order_by(PointLedgerEntry.created_at.desc(), PointLedgerEntry.id.desc())
            .offset((page - 1) * resolved_limit)
            .limit(resolved_limit)
        )
        result = await self._db.execute(stmt)
        return PointHistoryPage(
            entries=list(result.scalars().all()),
            total=total,
            total_pages=math.ceil(total / resolved_limit),
            current_page=page,
            limit=resolved_limit,
        )

    async def find_by_idempotency_key(self, key: str) -> PointLedgerEntry | None:
        stmt = select(PointLedgerEntry).where(PointLedgerEntry.idempotency_key == key)
        result = await self._db.execute(stmt)
        return result.scalar_one_or_none()

    async def grant_to_all(self, amount: int, reason: str) -> GrantAllReport:
        """Grant ``amount`` to every active member, one commit per member."""

        amount = _coerce_amount(amount)
        if amount <= 0:
            raise ValidationFailedError("Point grants require a positive amount", amount=amount)
        _normalize_reason(reason)

        result = await self._db.execute(
            select(Member.id)
            .where(Member.status == MemberStatusEnum.ACTIVE)
            .order_by(Member.created_at.asc(), Member.id.asc())
        )
        member_ids = list(result.scalars().all())

        report = GrantAllReport()
        for member_id in member_ids:
            try:
                await self.grant(member_id, amount, reason)
                await self._db.commit()
            except (CommerceError, SQLAlchemyError) as exc:
                await self._db.rollback()
                failure = _describe_failure(member_id, exc)
                report.failures.append(failure)
                logger.warning(
                    "Bulk point grant failed for member",
                    member_id=str(member_id),
                    kind=failure.kind,
                    error=failure.message,
                )
                continue
            report.success_count += 1

        logger.info(
            "Bulk point grant completed",
            amount=amount,
            reason=reason,
            succeeded=report.success_count,
            failed=len(report.failures),
        )
        return report

    async def _append(
        self,
        member_id: UUID,
        amount: int,
        reason: str,
        *,
        order_id: UUID | None,
        idempotency_key: str | None,
        member_checked: bool = False,
    ) -> LedgerAppendResult:
        normalized_reason = _normalize_reason(reason)
        if idempotency_key:
            existing = await self.find_by_idempotency_key(idempotency_key)
            if existing is not None:
                logger.info(
                    "Ledger entry already recorded for idempotency key",
                    member_id=str(member_id),
                    idempotency_key=idempotency_key,
                    entry_id=str(existing.id),
                )
                return LedgerAppendResult(entry=existing, created=False)

        if not member_checked:
            await self._require_member(member_id)

        entry = PointLedgerEntry(
            member_id=member_id,
            amount=amount,
            reason=normalized_reason,
            order_id=order_id,
            idempotency_key=idempotency_key,
        )
        self._db.add(entry)
        try:
            await self._db.flush()
        except IntegrityError:
            if not idempotency_key:
                raise
            # A concurrent writer recorded the same key first; this rolls back
            # the session's pending work, so callers commit beforehand.
            await self._db.rollback()
            existing = await self.find_by_idempotency_key(idempotency_key)
            if existing is None:
                raise
            logger.warning(
                "Detected race on ledger idempotency key",
                member_id=str(member_id),
                idempotency_key=idempotency_key,
            )
            return LedgerAppendResult(entry=existing, created=False)

        logger.info(
            "Recorded point ledger entry",
            member_id=str(member_id),
            amount=amount,
            reason=normalized_reason,
            order_id=str(order_id) if order_id else None,
        )
        return LedgerAppendResult(entry=entry, created=True)

    async def _require_member(self, member_id: UUID, *, for_update: bool = False) -> None:
        stmt = select(Member.id).where(Member.id == member_id)
        if for_update:
            stmt = stmt.with_for_update()
        exists = await self._db.scalar(stmt)
        if exists is None:
            raise NotFoundError(f"Member {member_id} not found", member_id=str(member_id))


def _coerce_amount(amount: object) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise ValidationFailedError("Point amounts must be whole numbers", amount=repr(amount))
    return amount


def _normalize_reason(reason: str) -> str:
    text = (reason or "").strip()
    if not text:
        raise ValidationFailedError("A reason is required for ledger entries")
    if len(text) > _MAX_REASON_LENGTH:
        raise ValidationFailedError(f"Reason must be at most {_MAX_REASON_LENGTH} characters")
    return text


def _describe_failure(member_id: UUID, exc: Exception) -> GrantFailure:
    if isinstance(exc, CommerceError):
        return GrantFailure(member_id=member_id, kind=exc.kind, message=exc.message)
    upstream = UpstreamFailureError(f"Point ledger unavailable: {exc.__class__.__name__}")
    return GrantFailure(member_id=member_id, kind=upstream.kind, message=upstream.message)


__all__ = [
    "GrantAllReport",
    "GrantFailure",
    "LedgerAppendResult",
    "PointHistoryPage",
    "PointLedger",
]
