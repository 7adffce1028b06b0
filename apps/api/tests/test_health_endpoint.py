import pytest
from httpx import ASGITransport, AsyncClient


@pytest.mark.asyncio
async def test_readyz_reports_component_statuses(app_with_db) -> None:
    app, _ = app_with_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.get("/api/v1/health/readyz")

    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "ready"
    components = payload["components"]
    assert components["database"]["status"] == "ready"
    assert components["grade_sweep"]["status"] == "disabled"


@pytest.mark.asyncio
async def test_healthz(app_with_db) -> None:
    app, _ = app_with_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        root = await client.get("/healthz")
        versioned = await client.get("/api/v1/health/healthz")

    assert root.status_code == 200
    assert root.json()["status"] == "ok"
    assert versioned.json() == {"status": "ok"}
