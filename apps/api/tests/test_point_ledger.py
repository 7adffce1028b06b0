from __future__ import annotations

from uuid import uuid4

import pytest
from sqlalchemy import func, select

from roastery_api.models.member import MemberStatusEnum
from roastery_api.models.point_ledger import PointLedgerEntry
from roastery_api.observability.loyalty import get_loyalty_store
from roastery_api.services.errors import ConflictError, NotFoundError, ValidationFailedError
from roastery_api.services.loyalty.ledger import PointLedger
from roastery_api.services.loyalty.rewards import RewardIssuer


@pytest.mark.asyncio
async def test_grant_and_balance(session_factory, make_member):
    member = await make_member()

    async with session_factory() as session:
        ledger = PointLedger(session)
        result = await ledger.grant(member.id, 500, "Welcome bonus")
        await ledger.grant(member.id, 250, "Review reward")
        await session.commit()
        balance = await ledger.balance(member.id)

    assert result.created is True
    assert result.entry.amount == 500
    assert balance == 750


@pytest.mark.parametrize("amount", [0, -10])
@pytest.mark.asyncio
async def test_non_positive_grants_are_rejected(session_factory, make_member, amount):
    member = await make_member()

    async with session_factory() as session:
        with pytest.raises(ValidationFailedError):
            await PointLedger(session).grant(member.id, amount, "Nothing")


@pytest.mark.asyncio
async def test_grant_rejects_fractional_amount_and_blank_reason(session_factory, make_member):
    member = await make_member()

    async with session_factory() as session:
        ledger = PointLedger(session)
        with pytest.raises(ValidationFailedError):
            await ledger.grant(member.id, 10.5, "Half point")
        with pytest.raises(ValidationFailedError):
            await ledger.grant(member.id, 10, "   ")


@pytest.mark.asyncio
async def test_grant_to_unknown_member(session_factory):
    async with session_factory() as session:
        with pytest.raises(NotFoundError):
            await PointLedger(session).grant(uuid4(), 100, "Ghost")


@pytest.mark.asyncio
async def test_deduct_requires_sufficient_balance(session_factory, make_member):
    member = await make_member()

    async with session_factory() as session:
        ledger = PointLedger(session)
        await ledger.grant(member.id, 300, "Grant")
        await session.commit()

        with pytest.raises(ValidationFailedError):
            await ledger.deduct(member.id, 301, "Checkout")

        result = await ledger.deduct(member.id, 120, "Checkout")
        await session.commit()
        balance = await ledger.balance(member.id)

    assert result.entry.amount == -120
    assert balance == 180


@pytest.mark.asyncio
async def test_idempotency_key_returns_existing_entry(session_factory, make_member):
    member = await make_member()

    async with session_factory() as session:
        ledger = PointLedger(session)
        first = await ledger.grant(member.id, 100, "Reward", idempotency_key="purchase-confirmation:abc")
        await session.commit()
        second = await ledger.grant(member.id, 100, "Reward", idempotency_key="purchase-confirmation:abc")
        count = await session.scalar(
            select(func.count(PointLedgerEntry.id)).where(PointLedgerEntry.member_id == member.id)
        )

    assert first.created is True
    assert second.created is False
    assert second.entry.id == first.entry.id
    assert count == 1


@pytest.mark.asyncio
async def test_history_pages_newest_first(session_factory, make_member):
    member = await make_member()

    async with session_factory() as session:
        ledger = PointLedger(session)
        for amount in (10, 20, 30, 40, 50):
            await ledger.grant(member.id, amount, f"Grant {amount}")
            await session.commit()

        first = await ledger.history(member.id, page=1, limit=2)
        last = await ledger.history(member.id, page=3, limit=2)

    assert [entry.amount for entry in first.entries] == [50, 40]
    assert first.total == 5
    assert first.total_pages == 3
    assert [entry.amount for entry in last.entries] == [10]
    assert last.current_page == 3


@pytest.mark.asyncio
async def test_history_validates_paging(session_factory, make_member):
    member = await make_member()

    async with session_factory() as session:
        ledger = PointLedger(session)
        with pytest.raises(ValidationFailedError):
            await ledger.history(member.id, page=0)
        with pytest.raises(ValidationFailedError):
            await ledger.history(member.id, limit=1_000)
        with pytest.raises(NotFoundError):
            await ledger.history(uuid4())
        empty = await ledger.history(member.id)

    assert empty.entries == []
    assert empty.total_pages == 0


@pytest.mark.asyncio
async def test_grant_all_targets_active_members(session_factory, make_member):
    active = [await make_member() for _ in range(3)]
    dormant = await make_member(status=MemberStatusEnum.DORMANT)

    async with session_factory() as session:
        report = await RewardIssuer(session).grant_all(1_000, "Anniversary")
        ledger = PointLedger(session)
        balances = [await ledger.balance(member.id) for member in active]
        dormant_balance = await ledger.balance(dormant.id)

    assert report.success_count == 3
    assert report.failures == []
    assert balances == [1_000, 1_000, 1_000]
    assert dormant_balance == 0
    assert get_loyalty_store().snapshot().rewards["points_issued"] == 3_000


@pytest.mark.asyncio
async def test_grant_all_rejects_invalid_amount(session_factory, make_member):
    await make_member()

    async with session_factory() as session:
        with pytest.raises(ValidationFailedError):
            await PointLedger(session).grant_to_all(0, "Nothing")


@pytest.mark.asyncio
async def test_grant_all_continues_past_a_failed_member(session_factory, make_member, monkeypatch):
    for _ in range(3):
        await make_member()
    original_grant = PointLedger.grant
    attempted = []

    async def flaky_grant(self, member_id, amount, reason, **kwargs):
        attempted.append(member_id)
        if len(attempted) == 2:
            raise ConflictError("Ledger row locked", member_id=str(member_id))
        return await original_grant(self, member_id, amount, reason, **kwargs)

    monkeypatch.setattr(PointLedger, "grant", flaky_grant)

    async with session_factory() as session:
        ledger = PointLedger(session)
        report = await ledger.grant_to_all(100, "Anniversary")
        balances = [await ledger.balance(member_id) for member_id in attempted]

    assert report.success_count == 2
    assert len(report.failures) == 1
    assert report.failures[0].member_id == attempted[1]
    assert report.failures[0].kind == "ConflictError"
    assert balances == [100, 0, 100]


@pytest.mark.asyncio
async def test_concurrent_key_insert_resolves_to_existing_entry(session_factory, make_member):
    member = await make_member()

    async with session_factory() as session:
        ledger = PointLedger(session)
        seeded = await ledger.grant(member.id, 5, "Seed", idempotency_key="k")
        await session.commit()
        seeded_id = seeded.entry.id

        original_find = ledger.find_by_idempotency_key
        lookups = []

        async def late_find(key):
            lookups.append(key)
            # The other writer's row is not visible on the first lookup.
            if len(lookups) == 1:
                return None
            return await original_find(key)

        ledger.find_by_idempotency_key = late_find
        result = await ledger.grant(member.id, 5, "Seed", idempotency_key="k")
        balance = await ledger.balance(member.id)
        count = await session.scalar(
            select(func.count()).select_from(PointLedgerEntry).where(PointLedgerEntry.member_id == member.id)
        )

    assert result.created is False
    assert result.entry.id == seeded_id
    assert lookups == ["k", "k"]
    assert balance == 5
    assert count == 1
