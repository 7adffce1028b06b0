"""Membership grade thresholds and idempotent grade reconciliation."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, Sequence
from uuid import UUID

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from roastery_api.core.settings import Settings, settings
from roastery_api.models.member import Member, MemberGradeEnum, MemberStatusEnum
from roastery_api.observability.loyalty import LoyaltyObservabilityStore, get_loyalty_store
from roastery_api.services.errors import ConflictError, NotFoundError, ValidationFailedError
from roastery_api.services.orders.revenue import RevenueAggregator


@dataclass(frozen=True)
class GradeThresholds:
    """Minimum valid spend per grade; the lowest grade needs no spend."""

    tiers: tuple[tuple[int, MemberGradeEnum], ...]
    base_grade: MemberGradeEnum = MemberGradeEnum.SILVER

    def __post_init__(self) -> None:
        minimums = [minimum for minimum, _ in self.tiers]
        if any(minimum < 0 for minimum in minimums):
            raise ValidationFailedError("Grade thresholds must be non-negative")
        if minimums != sorted(minimums, reverse=True):
            raise ValidationFailedError("Grade thresholds must be ordered from highest to lowest")

    @classmethod
    def from_pairs(cls, pairs: Iterable[tuple[int, MemberGradeEnum]]) -> "GradeThresholds":
        ordered = sorted(pairs, key=lambda pair: pair[0], reverse=True)
        return cls(tiers=tuple(ordered))

    @classmethod
    def from_settings(cls, config: Settings | None = None) -> "GradeThresholds":
        config = config or settings
        return cls.from_pairs(
            [
                (config.grade_vip_threshold, MemberGradeEnum.VIP),
                (config.grade_gold_threshold, MemberGradeEnum.GOLD),
            ]
        )

    def grade_for(self, spend: int) -> MemberGradeEnum:
        for minimum, grade in self.tiers:
            if spend >= minimum:
                return grade
        return self.base_grade


DEFAULT_THRESHOLDS = GradeThresholds.from_pairs(
    [(300_000, MemberGradeEnum.VIP), (100_000, MemberGradeEnum.GOLD)]
)


def grade_for_spend(spend: int, thresholds: GradeThresholds | None = None) -> MemberGradeEnum:
    """Pure, monotonic mapping from valid spend to grade."""

    return (thresholds or GradeThresholds.from_settings()).grade_for(spend)


@dataclass(slots=True)
class GradeReconciliation:
    member_id: UUID
    grade: MemberGradeEnum
    previous_grade: MemberGradeEnum
    changed: bool
    valid_spend: int
    attempts: int


class GradeReconciler:
    """Keeps ``Member.grade`` in line with the grade implied by valid spend.

    Safe to call any number of times: a consistent member costs two reads and
    no write. Divergent grades are corrected with a compare-and-set on the
    value that was read, so concurrent reconcilers cannot interleave into an
    intermediate grade. A lost race is retried before ``ConflictError``.
    """

    def __init__(
        self,
        db_session: AsyncSession,
        *,
        aggregator: RevenueAggregator | None = None,
        thresholds: GradeThresholds | None = None,
        max_attempts: int | None = None,
        store: LoyaltyObservabilityStore | None = None,
    ) -> None:
        self._db = db_session
        self._aggregator = aggregator or RevenueAggregator(db_session)
        self._thresholds = thresholds or GradeThresholds.from_settings()
        self._max_attempts = max_attempts or settings.grade_reconcile_max_attempts
        self._store = store or get_loyalty_store()

    async def reconcile(self, member_id: UUID) -> GradeReconciliation:
        for attempt in range(1, self._max_attempts + 1):
            observed = await self._read_grade(member_id)
            spend = await self._aggregator.compute_valid_spend(member_id)
            expected = self._thresholds.grade_for(spend)

            if observed == expected:
                self._store.record_grade_reconciliation("unchanged")
                return GradeReconciliation(
                    member_id=member_id,
                    grade=observed,
                    previous_grade=observed,
                    changed=False,
                    valid_spend=spend,
                    attempts=attempt,
                )

            if await self._compare_and_set(member_id, observed=observed, expected=expected):
                await self._db.commit()
                self._store.record_grade_reconciliation("updated", grade=expected.value)
                logger.info(
                    "Member grade reconciled",
                    member_id=str(member_id),
                    previous_grade=observed.value,
                    grade=expected.value,
                    valid_spend=spend,
                    attempt=attempt,
                )
                return GradeReconciliation(
                    member_id=member_id,
                    grade=expected,
                    previous_grade=observed,
                    changed=True,
                    valid_spend=spend,
                    attempts=attempt,
                )

            # Nothing was written; end the transaction so the retry sees the winner's value.
            await self._db.rollback()
            self._store.record_grade_reconciliation("conflict")
            logger.warning(
                "Grade compare-and-set lost a race",
                member_id=str(member_id),
                observed_grade=observed.value,
                expected_grade=expected.value,
                attempt=attempt,
            )

        raise ConflictError(
            f"Grade for member {member_id} changed concurrently; reconciliation abandoned after "
            f"{self._max_attempts} attempts",
            member_id=str(member_id),
        )

    async def reconcile_many(self, member_ids: Sequence[UUID]) -> list[GradeReconciliation]:
        return [await self.reconcile(member_id) for member_id in member_ids]

    async def list_active_member_ids(self, *, after: UUID | None = None, limit: int = 200) -> list[UUID]:
        """Page through active members by id for scheduled sweeps."""

        stmt = select(Member.id).where(Member.status == MemberStatusEnum.ACTIVE).order_by(Member.id.asc()).limit(limit)
        if after is not None:
            stmt = stmt.where(Member.id > after)
        result = await self._db.execute(stmt)
        return list(result.scalars().all())

    async def _read_grade(self, member_id: UUID) -> MemberGradeEnum:
        grade = await self._db.scalar(select(Member.grade).where(Member.id == member_id))
        if grade is None:
            raise NotFoundError(f"Member {member_id} not found", member_id=str(member_id))
        return MemberGradeEnum(grade)

    async def _compare_and_set(
        self,
        member_id: UUID,
        *,
        observed: MemberGradeEnum,
        expected: MemberGradeEnum,
    ) -> bool:
        stmt = (
            update(Member)
            .where(Member.id == member_id, Member.grade == observed)
            .values(grade=expected, grade_updated_at=datetime.now(timezone.utc))
        )
        result = await self._db.execute(stmt)
        return result.rowcount == 1


__all__ = [
    "DEFAULT_THRESHOLDS",
    "GradeReconciler",
    "GradeReconciliation",
    "GradeThresholds",
    "grade_for_spend",
]
