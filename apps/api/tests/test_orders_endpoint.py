from uuid import uuid4

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select

from roastery_api.core.settings import settings
from roastery_api.models.member import MemberRoleEnum
from roastery_api.models.order import Order, OrderStatusEnum
from roastery_api.models.point_ledger import PointLedgerEntry

S = OrderStatusEnum


def _headers(member, role=None):
    headers = {"X-Session-User": str(member.id)}
    if role:
        headers["X-Session-Role"] = role
    return headers


def _client(app):
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


@pytest.mark.asyncio
async def test_member_cancels_own_order(app_with_db, make_member, make_order):
    app, _ = app_with_db
    member = await make_member()
    order = await make_order(member.id, status=S.PAYMENT_COMPLETED)

    async with _client(app) as client:
        response = await client.post(
            f"/api/v1/orders/{order.id}/status",
            json={"status": "CANCELLED", "notes": "Changed my mind"},
            headers=_headers(member),
        )

    assert response.status_code == 200
    body = response.json()
    assert body["order"]["status"] == "CANCELLED"
    assert body["order"]["cancellable"] is False
    assert body["previousStatus"] == "PAYMENT_COMPLETED"
    assert body["changed"] is True
    assert body["warnings"] == []


@pytest.mark.asyncio
async def test_member_cannot_ship(app_with_db, make_member, make_order):
    app, _ = app_with_db
    member = await make_member()
    order = await make_order(member.id, status=S.PREPARING)

    async with _client(app) as client:
        response = await client.post(
            f"/api/v1/orders/{order.id}/status",
            json={"status": "SHIPPING"},
            headers=_headers(member),
        )

    assert response.status_code == 409
    assert response.json()["detail"]["kind"] == "InvalidTransition"


@pytest.mark.asyncio
async def test_foreign_order_looks_missing(app_with_db, make_member, make_order):
    app, _ = app_with_db
    owner = await make_member()
    stranger = await make_member()
    order = await make_order(owner.id)

    async with _client(app) as client:
        read = await client.get(f"/api/v1/orders/{order.id}", headers=_headers(stranger))
        write = await client.post(
            f"/api/v1/orders/{order.id}/status",
            json={"status": "CANCELLED"},
            headers=_headers(stranger),
        )

    assert read.status_code == 404
    assert write.status_code == 404
    assert write.json()["detail"]["kind"] == "NotFound"


@pytest.mark.asyncio
async def test_unknown_status_is_a_validation_error(app_with_db, make_member, make_order):
    app, _ = app_with_db
    admin = await make_member(role=MemberRoleEnum.ADMIN)
    order = await make_order(admin.id)

    async with _client(app) as client:
        unknown = await client.post(
            f"/api/v1/orders/{order.id}/status",
            json={"status": "TELEPORTED"},
            headers=_headers(admin, "ADMIN"),
        )
        malformed = await client.post(
            f"/api/v1/orders/{order.id}/status",
            json={},
            headers=_headers(admin, "ADMIN"),
        )

    assert unknown.status_code == 422
    assert unknown.json()["detail"]["kind"] == "ValidationError"
    assert malformed.status_code == 422
    assert malformed.json()["detail"]["kind"] == "ValidationError"


@pytest.mark.asyncio
async def test_session_headers_are_required(app_with_db, make_member, make_order):
    app, _ = app_with_db
    member = await make_member()
    order = await make_order(member.id)

    async with _client(app) as client:
        missing = await client.get(f"/api/v1/orders/{order.id}")
        malformed = await client.get(f"/api/v1/orders/{order.id}", headers={"X-Session-User": "not-a-uuid"})
        unknown = await client.get(f"/api/v1/orders/{order.id}", headers={"X-Session-User": str(uuid4())})
        escalation = await client.get(f"/api/v1/orders/{order.id}", headers=_headers(member, "ADMIN"))

    assert missing.status_code == 401
    assert missing.json() == {"detail": {"kind": "Unauthorized", "message": "Missing session user context"}}
    assert malformed.status_code == 400
    assert malformed.json()["detail"]["kind"] == "ValidationError"
    assert unknown.status_code == 404
    assert unknown.json()["detail"]["kind"] == "NotFound"
    assert escalation.status_code == 403
    assert escalation.json()["detail"] == {
        "kind": "Forbidden",
        "message": "Session role does not match member role",
    }


@pytest.mark.asyncio
async def test_purchase_confirmation_credits_points(app_with_db, make_member, make_order):
    app, session_factory = app_with_db
    member = await make_member()
    order = await make_order(member.id, status=S.DELIVERED, items=[(10_000, 1)])

    async with _client(app) as client:
        response = await client.post(
            f"/api/v1/orders/{order.id}/status",
            json={"status": "PURCHASE_COMPLETED"},
            headers=_headers(member),
        )
        repeat = await client.post(
            f"/api/v1/orders/{order.id}/status",
            json={"status": "PURCHASE_COMPLETED"},
            headers=_headers(member),
        )

    assert response.status_code == 200
    assert response.json()["reward"] == {"amount": 100, "created": True}
    assert repeat.status_code == 200
    assert repeat.json()["changed"] is False

    async with session_factory() as session:
        amounts = (
            await session.execute(select(PointLedgerEntry.amount).where(PointLedgerEntry.member_id == member.id))
        ).scalars().all()
    assert amounts == [100]


@pytest.mark.asyncio
async def test_member_order_history_tabs(app_with_db, make_member, make_order):
    app, _ = app_with_db
    member = await make_member()
    other = await make_member()
    await make_order(member.id, status=S.PREPARING)
    await make_order(member.id, status=S.DELIVERED)
    await make_order(member.id, status=S.CANCELLED)
    await make_order(other.id, status=S.PREPARING)

    async with _client(app) as client:
        orders_tab = await client.get("/api/v1/orders", headers=_headers(member))
        cancelled_tab = await client.get("/api/v1/orders", params={"view": "cancelled"}, headers=_headers(member))

    assert orders_tab.status_code == 200
    assert orders_tab.json()["total"] == 2
    assert {order["status"] for order in orders_tab.json()["orders"]} == {"PREPARING", "DELIVERED"}
    assert [order["status"] for order in cancelled_tab.json()["orders"]] == ["CANCELLED"]


@pytest.mark.asyncio
async def test_admin_lists_with_status_filter(app_with_db, make_member, make_order):
    app, _ = app_with_db
    admin = await make_member(role=MemberRoleEnum.ADMIN)
    member = await make_member()
    await make_order(member.id, status=S.PREPARING)
    await make_order(member.id, status=S.SHIPPING)

    async with _client(app) as client:
        response = await client.get(
            "/api/v1/orders",
            params={"status": ["preparing"], "memberId": str(member.id)},
            headers=_headers(admin, "ADMIN"),
        )
        too_large = await client.get("/api/v1/orders", params={"limit": 1_000}, headers=_headers(admin, "ADMIN"))

    assert response.status_code == 200
    assert [order["status"] for order in response.json()["orders"]] == ["PREPARING"]
    assert too_large.status_code == 422


@pytest.mark.asyncio
async def test_admin_corrects_items(app_with_db, make_member, make_order):
    app, _ = app_with_db
    admin = await make_member(role=MemberRoleEnum.ADMIN)
    member = await make_member()
    order = await make_order(member.id, status=S.PREPARING, items=[(10_000, 2)])
    item_id = str(order.items[0].id)

    async with _client(app) as client:
        response = await client.post(
            f"/api/v1/orders/{order.id}",
            json={"orderItems": [{"id": item_id, "salePrice": 9_000}]},
            headers=_headers(admin, "ADMIN"),
        )
        forbidden = await client.post(
            f"/api/v1/orders/{order.id}",
            json={"orderItems": [{"id": item_id, "quantity": 1}]},
            headers=_headers(member),
        )

    assert response.status_code == 200
    body = response.json()
    assert body["previousTotal"] == 20_000
    assert body["newTotal"] == 18_000
    assert body["order"]["totalPrice"] == 18_000
    assert forbidden.status_code == 403


@pytest.mark.asyncio
async def test_internal_key_guards_admin_writes(app_with_db, make_member, make_order, monkeypatch):
    app, _ = app_with_db
    monkeypatch.setattr(settings, "internal_api_key", "back-office-key")
    admin = await make_member(role=MemberRoleEnum.ADMIN)
    order = await make_order(admin.id, status=S.PREPARING)

    async with _client(app) as client:
        rejected = await client.delete(f"/api/v1/orders/{order.id}", headers=_headers(admin, "ADMIN"))
        accepted = await client.delete(
            f"/api/v1/orders/{order.id}",
            headers={**_headers(admin, "ADMIN"), "X-API-Key": "back-office-key"},
        )

    assert rejected.status_code == 401
    assert rejected.json()["detail"]["kind"] == "Unauthorized"
    assert accepted.status_code == 204


@pytest.mark.asyncio
async def test_bulk_status_update(app_with_db, make_member, make_order):
    app, session_factory = app_with_db
    admin = await make_member(role=MemberRoleEnum.ADMIN)
    member = await make_member()
    orders = [await make_order(member.id, status=S.PAYMENT_COMPLETED) for _ in range(4)]
    missing = str(uuid4())
    order_ids = [str(order.id) for order in orders]

    async with _client(app) as client:
        response = await client.post(
            "/api/v1/orders/bulk/status",
            json={"orderIds": order_ids[:2] + [missing] + order_ids[2:], "status": "PREPARING"},
            headers=_headers(admin, "ADMIN"),
        )

    assert response.status_code == 200
    body = response.json()
    assert body["mode"] == "lenient"
    assert body["succeeded"] == order_ids
    assert body["failed"][0]["id"] == missing
    assert body["failed"][0]["kind"] == "NotFound"

    async with session_factory() as session:
        statuses = (await session.execute(select(Order.status).where(Order.member_id == member.id))).scalars().all()
    assert set(statuses) == {S.PREPARING}


@pytest.mark.asyncio
async def test_bulk_edit_strict_mode(app_with_db, make_member, make_order):
    app, _ = app_with_db
    admin = await make_member(role=MemberRoleEnum.ADMIN)
    member = await make_member()
    editable = await make_order(member.id, status=S.PREPARING)
    locked = await make_order(member.id, status=S.CANCELLED)

    async with _client(app) as client:
        response = await client.post(
            "/api/v1/orders/bulk/edit",
            json={
                "mode": "strict",
                "edits": [
                    {"orderId": str(editable.id), "orderItems": [{"id": str(editable.items[0].id), "quantity": 3}]},
                    {"orderId": str(locked.id), "orderItems": [{"id": str(locked.items[0].id), "quantity": 3}]},
                ],
            },
            headers=_headers(admin, "ADMIN"),
        )

    assert response.status_code == 200
    body = response.json()
    assert body["aborted"] is True
    assert body["succeeded"] == []
    assert [failure["id"] for failure in body["failed"]] == [str(locked.id)]


@pytest.mark.asyncio
async def test_state_events_timeline(app_with_db, make_member, make_order):
    app, _ = app_with_db
    admin = await make_member(role=MemberRoleEnum.ADMIN)
    member = await make_member()
    order = await make_order(member.id, status=S.SHIPPING)

    async with _client(app) as client:
        await client.post(
            f"/api/v1/orders/{order.id}/status",
            json={"status": "PREPARING", "notes": "Carrier returned parcel"},
            headers=_headers(admin, "ADMIN"),
        )
        response = await client.get(f"/api/v1/orders/{order.id}/state-events", headers=_headers(member))

    assert response.status_code == 200
    events = response.json()
    assert len(events) == 1
    assert events[0]["eventType"] == "state_change"
    assert events[0]["fromStatus"] == "SHIPPING"
    assert events[0]["toStatus"] == "PREPARING"
    assert events[0]["metadata"] == {"non_forward": True}
    assert events[0]["actorType"] == "admin"
