"""
REST API tests against an injected runtime.

The lifespan is not entered (no `with TestClient`), so nothing is built
from the environment; get_runtime is overridden with the runtime fixture.
"""

import pytest
from fastapi.testclient import TestClient

from conftest import OWNER, RecordingAdapter
from pulse_autonomy.api import deps
from pulse_autonomy.api.main import app
from pulse_autonomy.config import API_KEYS_ENV, DEV_MODE_ENV

TASK = {"domain": "tasks", "effect_type": "create", "payload": {"title": "Buy milk", "due": "2026-03-05"}}
TASK_KEY = "tasks:create:struct_due,title"


def effect(confidence, **overrides):
    return {**TASK, "confidence": confidence, **overrides}


@pytest.fixture
def client(runtime, monkeypatch):
    monkeypatch.delenv(API_KEYS_ENV, raising=False)
    monkeypatch.setenv(DEV_MODE_ENV, "1")
    deps.rate_limiter.requests.clear()
    deps.state.runtime = runtime
    app.dependency_overrides[deps.get_runtime] = lambda: runtime
    yield TestClient(app)
    app.dependency_overrides.clear()
    deps.state.runtime = None


class TestAuth:
    def test_no_keys_no_dev_mode(self, client, monkeypatch):
        monkeypatch.delenv(DEV_MODE_ENV)
        assert client.get("/api/v1/audit").status_code == 401

    def test_configured_keys(self, client, monkeypatch):
        monkeypatch.setenv(API_KEYS_ENV, "secret-key")
        assert client.get("/api/v1/audit").status_code == 401
        assert client.get("/api/v1/audit", headers={"X-API-Key": "wrong"}).status_code == 403
        response = client.get("/api/v1/audit", headers={"X-API-Key": "secret-key"})
        assert response.status_code == 200
        assert response.headers["X-RateLimit-Limit"] == str(deps.rate_limiter.limit)

    def test_health_is_open(self, client, monkeypatch):
        monkeypatch.delenv(DEV_MODE_ENV)
        data = client.get("/health").json()
        assert data["status"] == "healthy"
        assert data["engine"]["loaded"] is True
        assert data["engine"]["adapters"] == ["chef", "planning", "tasks"]

    def test_health_without_runtime(self, client):
        deps.state.runtime = None
        app.dependency_overrides.clear()
        assert client.get("/health").json()["status"] == "degraded"
        assert client.post("/api/v1/effects/decide", json={"owner_id": OWNER, "effect": effect(0.7)}).status_code == 503


class TestEffects:
    def test_classify(self, client):
        response = client.post("/api/v1/effects/classify", json={"effect": effect(0.5)})
        assert response.json()["class_key"] == TASK_KEY

    def test_confidence_out_of_range(self, client):
        response = client.post("/api/v1/effects/classify", json={"effect": effect(1.5)})
        assert response.status_code == 422

    def test_decide_fresh_class(self, client):
        data = client.post("/api/v1/effects/decide", json={"owner_id": OWNER, "effect": effect(0.7)}).json()
        assert data["autonomy_level"] == "L0"
        assert data["decision_reason"] == "CLASS_LOCKED"

    def test_execute_then_revert(self, client, adapters):
        body = {"owner_id": OWNER, "effect": effect(0.9, effect_id="eff_api000000001")}
        data = client.post("/api/v1/effects/execute", json=body).json()
        assert data["applied"] is True
        assert data["write_mode"] == "auto"
        assert adapters["tasks"].applied == ["eff_api000000001"]

        data = client.post("/api/v1/effects/eff_api000000001/revert", json={}).json()
        assert data["reverted"] is True
        assert adapters["tasks"].reverted == ["eff_api000000001"]

    def test_execute_confirm_mode(self, client):
        data = client.post("/api/v1/effects/execute", json={"owner_id": OWNER, "effect": effect(0.7)}).json()
        assert data["applied"] is False
        assert data["requires_confirmation"] is True

    def test_execute_adapter_failure(self, client, runtime):
        runtime.adapters.register(RecordingAdapter("tasks", fail_apply=True))
        response = client.post("/api/v1/effects/execute", json={"owner_id": OWNER, "effect": effect(0.95)})
        assert response.status_code == 502

    def test_revert_unknown(self, client):
        assert client.post("/api/v1/effects/eff_missing/revert", json={}).status_code == 404

    def test_confirm(self, client, adapters):
        data = client.post("/api/v1/effects/confirm", json={"owner_id": OWNER, "effect": effect(0.7)}).json()
        assert data["applied"] is True
        assert len(adapters["tasks"].applied) == 1

    def test_outcome(self, client):
        body = {"owner_id": OWNER, "effect": effect(0.7), "outcome": "reject"}
        data = client.post("/api/v1/effects/outcome", json=body).json()
        assert data["stats"]["rejections"] == 1
        assert data["status"] == "locked"

    def test_ipp_block_is_not_a_client_outcome(self, client):
        body = {"owner_id": OWNER, "effect": effect(0.7), "outcome": "ipp_block"}
        assert client.post("/api/v1/effects/outcome", json=body).status_code == 422

    def test_response(self, client):
        body = {"owner_id": OWNER, "effect": effect(0.7), "response": "ignored"}
        data = client.post("/api/v1/effects/response", json=body).json()
        assert data["trust_after"] == pytest.approx(0.48)

    def test_explain(self, client):
        data = client.post("/api/v1/effects/explain", json={"owner_id": OWNER, "effect": effect(0.9)}).json()
        assert data["decision_reason"] == "CLASS_LOCKED"
        assert data["class_key"] == TASK_KEY


class TestClasses:
    def test_list_get_unlock(self, client):
        client.post("/api/v1/effects/execute", json={"owner_id": OWNER, "effect": effect(0.9)})

        listing = client.get("/api/v1/classes", params={"owner_id": OWNER}).json()
        assert listing["count"] == 1
        assert listing["classes"][0]["class_key"] == TASK_KEY

        data = client.get(f"/api/v1/classes/{TASK_KEY}", params={"owner_id": OWNER}).json()
        assert data["stats"]["successes"] == 1

        data = client.post(f"/api/v1/classes/{TASK_KEY}/unlock", json={"owner_id": OWNER, "reason": "reviewed"}).json()
        assert data["health_state"] == "healthy"

    def test_unknown_class(self, client):
        assert client.get("/api/v1/classes/tasks:create:nope", params={"owner_id": OWNER}).status_code == 404
        assert client.post("/api/v1/classes/tasks:create:nope/pause", json={"owner_id": OWNER}).status_code == 404

    def test_pause_resume_user_pause(self, client):
        client.post("/api/v1/effects/execute", json={"owner_id": OWNER, "effect": effect(0.7)})

        assert client.post(f"/api/v1/classes/{TASK_KEY}/pause", json={"owner_id": OWNER}).json()["status"] == "paused"
        assert client.post(f"/api/v1/classes/{TASK_KEY}/resume", json={"owner_id": OWNER}).json()["status"] == "locked"
        data = client.post(f"/api/v1/classes/{TASK_KEY}/user-pause", json={"owner_id": OWNER}).json()
        assert data["user_paused"] is True


class TestAudit:
    def test_query_and_verify(self, client):
        client.post("/api/v1/effects/execute", json={"owner_id": OWNER, "effect": effect(0.7)})

        data = client.get("/api/v1/audit", params={"owner_id": OWNER, "event_type": "gate.write_mode_resolved"}).json()
        assert data["count"] == 1
        assert data["events"][0]["decision"] == "confirm"

        verify = client.get("/api/v1/audit/verify").json()
        assert verify["valid"] is True
        assert verify["checked"] >= 1

    def test_limit_bounds(self, client):
        assert client.get("/api/v1/audit", params={"limit": 0}).status_code == 422
