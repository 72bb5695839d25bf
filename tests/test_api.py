"""Tests for the FastAPI server endpoints."""

import pytest
from asgi_lifespan import LifespanManager
from httpx import ASGITransport, AsyncClient

from skane_engine.api.server import app
from skane_engine.config import get_settings
from skane_engine.storage.database import dispose_engine


@pytest.fixture
async def client(tmp_path, monkeypatch):
    """Async test client with lifespan (startup / shutdown) fully executed."""
    monkeypatch.setenv("SKANE_DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'api.db'}")
    monkeypatch.setenv("SKANE_API_SECRET_KEY", "")
    monkeypatch.setenv("SKANE_FEEDBACK_RATE_LIMIT_PER_MINUTE", "3")
    get_settings.cache_clear()
    await dispose_engine()

    async with LifespanManager(app) as manager:
        transport = ASGITransport(app=manager.app)
        async with AsyncClient(transport=transport, base_url="http://test") as c:
            yield c

    await dispose_engine()
    get_settings.cache_clear()


async def _scan(client: AsyncClient, signal: dict, owner_ref: str = "acct-1", **extra) -> dict:
    resp = await client.post("/skane/scan", json={"owner_ref": owner_ref, "signal": signal, **extra})
    assert resp.status_code == 201, resp.text
    return resp.json()


@pytest.mark.asyncio
async def test_health(client: AsyncClient):
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"
    assert resp.json()["catalog_size"] > 0


@pytest.mark.asyncio
async def test_request_id_echoed(client: AsyncClient):
    resp = await client.get("/skane/actions", headers={"X-Request-ID": "req-123"})
    assert resp.headers["X-Request-ID"] == "req-123"

    resp = await client.get("/skane/actions")
    assert resp.headers["X-Request-ID"]


@pytest.mark.asyncio
async def test_scan_and_feedback(client: AsyncClient, high_signal):
    scan = await _scan(client, high_signal)
    assert scan["state"]["primary_state"] == "HIGH_ACTIVATION"
    assert scan["action"]["id"] == "shoulder_drop"
    assert scan["before_score"] == {"min": 87.6, "max": 98.4}

    resp = await client.post(f"/skane/sessions/{scan['session_id']}/feedback", json={"feedback": "clear"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["feedback"] == "better"
    assert body["skane_index"] == 35
    assert body["should_offer_share"] is True
    assert body["glyph"] == "🙂"
    assert body["replayed"] is False

    again = await client.post(f"/skane/sessions/{scan['session_id']}/feedback", json={"feedback": "worse"})
    assert again.status_code == 200
    assert again.json()["replayed"] is True
    assert again.json()["skane_index"] == 35


@pytest.mark.asyncio
async def test_invalid_signal_is_400(client: AsyncClient, high_signal):
    high_signal["postural"]["neck_tension"] = 7
    resp = await client.post("/skane/scan", json={"owner_ref": "acct-1", "signal": high_signal})
    assert resp.status_code == 400
    body = resp.json()
    assert body["error"] == "invalid_signal"
    assert body["errors"][0]["field"] == "postural.neck_tension"


@pytest.mark.asyncio
async def test_malformed_body_is_400(client: AsyncClient):
    resp = await client.post("/skane/scan", json={"signal": {}})
    assert resp.status_code == 400
    assert resp.json()["error"] == "validation_failed"


@pytest.mark.asyncio
async def test_unknown_session_is_404(client: AsyncClient):
    resp = await client.post("/skane/sessions/nope/feedback", json={"feedback": "better"})
    assert resp.status_code == 404
    assert resp.json()["error"] == "unknown_session"


@pytest.mark.asyncio
async def test_cooldown(client: AsyncClient, regulated_signal):
    resp = await client.get("/skane/cooldown/acct-1")
    assert resp.json()["can_reset"] is True

    await _scan(client, regulated_signal)
    resp = await client.get("/skane/cooldown/acct-1")
    assert resp.json()["can_reset"] is False
    assert resp.json()["hours_until_reset"] == 24

    resp = await client.post("/skane/scan", json={"owner_ref": "acct-1", "signal": regulated_signal})
    assert resp.status_code == 409
    assert resp.json()["error"] == "cooldown_active"
    assert resp.json()["hours_until_reset"] == 24


@pytest.mark.asyncio
async def test_feedback_rate_limited(client: AsyncClient, regulated_signal):
    scan = await _scan(client, regulated_signal)
    url = f"/skane/sessions/{scan['session_id']}/feedback"
    for _ in range(3):
        assert (await client.post(url, json={"feedback": "same"})).status_code == 200
    resp = await client.post(url, json={"feedback": "same"})
    assert resp.status_code == 429
    assert int(resp.headers["Retry-After"]) >= 1


@pytest.mark.asyncio
async def test_history_hides_internal_state(client: AsyncClient, low_signal):
    scan = await _scan(client, low_signal)
    await client.post(f"/skane/sessions/{scan['session_id']}/feedback", json={"feedback": "worse"})

    resp = await client.get("/skane/sessions", params={"owner_ref": "acct-1"})
    assert resp.status_code == 200
    [item] = resp.json()
    assert item["id"] == scan["session_id"]
    assert item["glyph"] == "😕"
    assert "primary_state" not in item


@pytest.mark.asyncio
async def test_classify_does_not_persist(client: AsyncClient, low_signal):
    resp = await client.post("/skane/classify", json={"signal": low_signal})
    assert resp.status_code == 200
    assert resp.json()["state"]["primary_state"] == "LOW_ENERGY"

    resp = await client.get("/skane/sessions", params={"owner_ref": "acct-1"})
    assert resp.json() == []


@pytest.mark.asyncio
async def test_actions_filtered_by_state(client: AsyncClient):
    resp = await client.get("/skane/actions", params={"state": "LOW_ENERGY"})
    ids = {a["id"] for a in resp.json()}
    assert ids == {"energizing_breath", "grounding_posture", "chest_opening"}


@pytest.mark.asyncio
async def test_ritual_endpoint(client: AsyncClient):
    resp = await client.get("/skane/ritual/acct-1")
    assert resp.status_code == 200
    assert resp.json() == {
        "eligible": False,
        "reason": "no_actions",
        "stats": {"total_actions": 0, "positive_rate": 0.0, "days_since_first": 0, "distinct_days": 0},
    }


@pytest.mark.asyncio
async def test_associate_guest(client: AsyncClient, high_signal):
    scan = await _scan(client, high_signal, owner_ref="guest-tok", owner_kind="guest")

    resp = await client.post("/skane/associate", json={"guest_token": "guest-tok", "account_id": "acct-9"})
    assert resp.status_code == 200
    assert resp.json() == {"migrated": True, "session_id": scan["session_id"], "source": "reowned"}

    resp = await client.post("/skane/associate", json={"guest_token": "guest-tok", "account_id": "acct-9"})
    assert resp.json()["source"] == "already_migrated"

    history = (await client.get("/skane/sessions", params={"owner_ref": "acct-9"})).json()
    assert [s["id"] for s in history] == [scan["session_id"]]


@pytest.mark.asyncio
async def test_api_key_enforced_when_configured(client: AsyncClient, monkeypatch):
    monkeypatch.setenv("SKANE_API_SECRET_KEY", "s3cret")
    get_settings.cache_clear()

    assert (await client.get("/skane/actions")).status_code == 401
    assert (await client.get("/skane/actions", headers={"X-API-Key": "s3cret"})).status_code == 200
    assert (await client.get("/health")).status_code == 200
