"""Tests for the HTTP routes."""

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from conftest import TODAY, add_prices, daily_series
from market_alerts.api.deps import get_session_factory
from market_alerts.main import app

WINDOW = {"commodity": "CORN", "end_date": TODAY.isoformat(), "days": "7"}


@pytest_asyncio.fixture
async def client(session_factory):
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http:
        yield http
    app.dependency_overrides.clear()


async def _seed_alert(client, session_factory) -> dict:
    response = await client.post(
        "/api/rules",
        json={"name": "Day move", "rule_type": "DAY_CHANGE_ABS", "threshold": 20, "severity": "HIGH"},
    )
    assert response.status_code == 201
    await add_prices(session_factory, daily_series("P1", [2400, 2425]))

    response = await client.post("/api/alerts/evaluate", json={**WINDOW, "operator": "alice"})
    assert response.status_code == 200
    assert response.json()["created"] == 1

    response = await client.get("/api/alerts", params=WINDOW)
    assert response.status_code == 200
    return response.json()["items"][0]


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


@pytest.mark.asyncio
async def test_rule_crud(client):
    response = await client.post(
        "/api/rules", json={"name": "Run", "rule_type": "CONTINUOUS_DAYS", "days": 3}
    )
    assert response.status_code == 201
    rule = response.json()
    assert rule["days"] == 3
    assert rule["threshold"] is None

    response = await client.patch(f"/api/rules/{rule['id']}", json={"priority": 4})
    assert response.status_code == 200
    assert response.json()["priority"] == 4

    response = await client.get("/api/rules")
    assert [item["id"] for item in response.json()] == [rule["id"]]

    response = await client.delete(f"/api/rules/{rule['id']}")
    assert response.status_code == 204
    response = await client.get(f"/api/rules/{rule['id']}")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_invalid_rule_is_bad_request(client):
    response = await client.post(
        "/api/rules", json={"name": "Bad", "rule_type": "DAY_CHANGE_PCT", "threshold": -1}
    )
    assert response.status_code == 400
    assert response.json()["detail"]["error"] == "ValidationError"
    assert response.json()["detail"]["field"] == "threshold"


@pytest.mark.asyncio
async def test_evaluate_list_and_transition(client, session_factory):
    alert = await _seed_alert(client, session_factory)
    assert alert["status"] == "OPEN"
    assert alert["severity"] == "HIGH"
    assert alert["trigger_value"] == 25.0
    assert alert["trigger_date"] == TODAY.isoformat()

    response = await client.patch(
        f"/api/alerts/{alert['id']}/status", json={"status": "ACKNOWLEDGED", "operator": "bob"}
    )
    assert response.status_code == 200
    assert response.json()["status"] == "ACKNOWLEDGED"

    response = await client.patch(f"/api/alerts/{alert['id']}/status", json={"status": "CLOSED"})
    assert response.status_code == 400

    response = await client.patch(
        f"/api/alerts/{alert['id']}/status",
        json={"status": "CLOSED", "reason": "price confirmed", "operator": "bob"},
    )
    assert response.status_code == 200
    assert response.json()["closed_reason"] == "price confirmed"

    response = await client.patch(
        f"/api/alerts/{alert['id']}/status", json={"status": "ACKNOWLEDGED"}
    )
    assert response.status_code == 409
    assert response.json()["detail"]["from_status"] == "CLOSED"

    response = await client.get(f"/api/alerts/{alert['id']}/logs")
    assert response.status_code == 200
    assert [log["action"] for log in response.json()] == ["CLOSE", "ACK", "CREATE"]


@pytest.mark.asyncio
async def test_list_filters_and_refresh(client, session_factory):
    await _seed_alert(client, session_factory)

    response = await client.get("/api/alerts", params={**WINDOW, "severity": "LOW"})
    assert response.json() == {"total": 0, "items": []}

    response = await client.get("/api/alerts", params={**WINDOW, "refresh": "true"})
    body = response.json()
    assert body["total"] == 1

    response = await client.get("/api/alerts", params={**WINDOW, "status": "SNOOZED"})
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_unknown_alert(client):
    response = await client.get("/api/alerts/missing/logs")
    assert response.status_code == 404
    response = await client.patch("/api/alerts/missing/status", json={"status": "OPEN"})
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_continuity_routes(client, session_factory):
    await add_prices(session_factory, daily_series("P1", [100] * 7))

    response = await client.get("/api/continuity/health", params=WINDOW)
    assert response.status_code == 200
    body = response.json()
    assert body["summary"]["point_count"] == 1
    assert body["points"][0]["score"] == 100
    assert body["points"][0]["grade"] == "A"

    response = await client.get(
        "/api/continuity/regions", params={**WINDOW, "window": "7", "level": "province"}
    )
    assert response.status_code == 200
    body = response.json()
    assert body["level"] == "province"
    assert body["regions"]["regions"][0]["region"] == "Liaoning"
    assert body["regions"]["expected_days"] == 7

    response = await client.get("/api/continuity/health", params={"days": "0"})
    assert response.status_code == 400
