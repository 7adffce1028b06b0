import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Iterable
from uuid import uuid4

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine


def _configure_path() -> None:
    src_path = Path(__file__).resolve().parents[1] / "src"
    if src_path.exists():
        sys.path.insert(0, str(src_path))


_configure_path()
os.environ.setdefault("TRACING_ENABLED", "false")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from roastery_api.app import create_app  # noqa: E402
from roastery_api.db.base import Base  # noqa: E402
from roastery_api.db.session import get_session  # noqa: E402
from roastery_api.models.member import (  # noqa: E402
    Member,
    MemberGradeEnum,
    MemberRoleEnum,
    MemberStatusEnum,
)
from roastery_api.models.order import Order, OrderItem, OrderStatusEnum  # noqa: E402
from roastery_api.observability.loyalty import get_loyalty_store  # noqa: E402


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", future=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        yield factory
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def app_with_db(session_factory):
    app = create_app()

    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session

    try:
        yield app, session_factory
    finally:
        app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def reset_loyalty_store():
    get_loyalty_store().reset()
    yield
    get_loyalty_store().reset()


@pytest.fixture
def make_member(session_factory):
    async def _make(
        *,
        grade: MemberGradeEnum = MemberGradeEnum.SILVER,
        role: MemberRoleEnum = MemberRoleEnum.USER,
        status: MemberStatusEnum = MemberStatusEnum.ACTIVE,
        name: str = "Test Member",
    ) -> Member:
        async with session_factory() as session:
            member = Member(
                email=f"{uuid4().hex[:12]}@roastery.test",
                name=name,
                grade=grade,
                role=role,
                status=status,
            )
            session.add(member)
            await session.commit()
            return member

    return _make


@pytest.fixture
def make_order(session_factory):
    async def _make(
        member_id,
        *,
        status: OrderStatusEnum = OrderStatusEnum.PENDING_PAYMENT,
        items: Iterable[tuple[int, int]] = ((10_000, 1),),
        total_price: int | None = None,
        created_at: datetime | None = None,
    ) -> Order:
        lines = [(int(price), int(quantity)) for price, quantity in items]
        async with session_factory() as session:
            order = Order(
                member_id=member_id,
                status=status,
                total_price=sum(price * quantity for price, quantity in lines) if total_price is None else total_price,
            )
            if created_at is not None:
                order.created_at = created_at
            order.items = [
                OrderItem(product_id=index + 1, product_name=f"Blend #{index + 1}", sale_price=price, quantity=quantity)
                for index, (price, quantity) in enumerate(lines)
            ]
            session.add(order)
            await session.commit()
            return order

    return _make

