"""
test_api.py - HTTP tests for the trigger endpoint and service probes.

The dispatcher dependency is overridden with an in-memory store and the
simulated push transport, so no database or push credentials are needed.

Run with:
    pytest tests/test_api.py -v
"""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from sosalert.app.alerts.channels.simulated_push import SimulatedPushTransport
from sosalert.app.alerts.dispatcher import Dispatcher
from sosalert.app.alerts.record_store import InMemoryRecordStore
from sosalert.app.api.v1.alerts import get_dispatcher
from sosalert.app.core.errors import GENERIC_INTERNAL_MESSAGE
from sosalert.app.main import app


LONG_TOKEN = "fcm-token-0123456789abcdef"
TWIN_TOKENS = ("cXyZ1234abcd:APA91bAAA", "cXyZ1234abcd:APA91bBBB")


def _make_store() -> InMemoryRecordStore:
    return InMemoryRecordStore({
        "T1": {"fullName": "Asha Verma", "assignedResponders": ["R1", "R2", "R3"]},
        "T2": {"fullName": "No Responders", "assignedResponders": []},
        "T3": {"fullName": "Unreachable", "assignedResponders": ["R3"]},
        "T4": {"fullName": "Twin Devices", "assignedResponders": ["R4", "R5"]},
        "R1": {"fcmToken": "tok-r1"},
        "R2": {"fcmToken": LONG_TOKEN},
        "R3": {"fullName": "No Device"},
        "R4": {"fcmToken": TWIN_TOKENS[0]},
        "R5": {"fcmToken": TWIN_TOKENS[1]},
    })


class CrashingTransport(SimulatedPushTransport):
    async def send_multicast(self, message):
        raise RuntimeError("boom: socket closed")


@pytest.fixture
def push():
    return SimulatedPushTransport()


@pytest.fixture
def client(push):
    dispatcher = Dispatcher(_make_store(), push)
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    yield TestClient(app)
    app.dependency_overrides.clear()


# ═══════════════════════════════════════════════════════════════════════════
# POST /api/v1/alerts/trigger
# ═══════════════════════════════════════════════════════════════════════════

class TestTriggerEndpoint:

    def test_success(self, client, push):
        resp = client.post(
            "/api/v1/alerts/trigger",
            json={"targetId": "T1"},
            headers={"X-Actor-Id": "staff-9"},
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["alertId"].startswith("ALR-")
        assert body["sentCount"] == 2
        assert body["failedCount"] == 0
        assert body["message"] == "Alert triggered successfully. Sent to 2 device(s)."
        assert body["unreachableResponders"] == ["R3"]
        assert push.sent[0].data["triggeredBy"] == "staff-9"

    def test_target_user_id_alias(self, client):
        resp = client.post("/api/v1/alerts/trigger", json={"targetUserId": "T1"})
        assert resp.status_code == 200
        assert resp.json()["sentCount"] == 2

    def test_partial_failure_lists_abbreviated_tokens(self, client, push):
        push.fail_tokens([LONG_TOKEN], "UNREGISTERED")
        body = client.post("/api/v1/alerts/trigger", json={"targetId": "T1"}).json()
        assert body["sentCount"] == 1
        assert body["failedCount"] == 1
        assert body["failures"] == [{"token": LONG_TOKEN[:12] + "...", "reason": "UNREGISTERED"}]

    def test_failures_sharing_a_prefix_both_listed(self, client, push):
        push.fail_tokens([TWIN_TOKENS[0]], "UNREGISTERED")
        push.fail_tokens([TWIN_TOKENS[1]], "QUOTA_EXCEEDED")
        body = client.post("/api/v1/alerts/trigger", json={"targetId": "T4"}).json()
        assert body["failedCount"] == 2
        assert [f["reason"] for f in body["failures"]] == ["UNREGISTERED", "QUOTA_EXCEEDED"]
        assert {f["token"] for f in body["failures"]} == {"cXyZ1234abcd..."}

    def test_missing_target_id(self, client):
        resp = client.post("/api/v1/alerts/trigger", json={})
        assert resp.status_code == 400
        error = resp.json()["error"]
        assert error["code"] == "invalid-argument"
        assert error["message"] == "targetId is required and must be a non-empty string"

    @pytest.mark.parametrize("target_id", [123, None, ["T1"]])
    def test_non_string_target_id(self, client, target_id):
        resp = client.post("/api/v1/alerts/trigger", json={"targetId": target_id})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "invalid-argument"

    def test_blank_target_id(self, client):
        resp = client.post("/api/v1/alerts/trigger", json={"targetId": "   "})
        assert resp.status_code == 400
        assert resp.json()["error"]["details"]["field"] == "targetId"

    def test_unknown_target(self, client):
        resp = client.post("/api/v1/alerts/trigger", json={"targetId": "ghost"})
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "not-found"

    def test_no_responders(self, client):
        resp = client.post("/api/v1/alerts/trigger", json={"targetId": "T2"})
        assert resp.status_code == 412
        assert resp.json()["error"]["message"] == "Target user has no assigned responders"

    def test_no_usable_tokens(self, client):
        resp = client.post("/api/v1/alerts/trigger", json={"targetId": "T3"})
        assert resp.status_code == 412
        assert resp.json()["error"]["code"] == "failed-precondition"

    def test_internal_error_hides_detail(self):
        dispatcher = Dispatcher(_make_store(), CrashingTransport())
        app.dependency_overrides[get_dispatcher] = lambda: dispatcher
        try:
            resp = TestClient(app).post("/api/v1/alerts/trigger", json={"targetId": "T1"})
        finally:
            app.dependency_overrides.clear()
        assert resp.status_code == 500
        assert resp.json()["error"]["message"] == GENERIC_INTERNAL_MESSAGE
        assert "boom" not in resp.text

    def test_request_id_echoed(self, client):
        resp = client.post(
            "/api/v1/alerts/trigger",
            json={"targetId": "T1"},
            headers={"X-Request-ID": "req-123"},
        )
        assert resp.headers["X-Request-ID"] == "req-123"
        assert resp.headers["X-Process-Time"].endswith("ms")


# ═══════════════════════════════════════════════════════════════════════════
# Probes
# ═══════════════════════════════════════════════════════════════════════════

class TestProbes:

    def test_root(self, client):
        body = client.get("/").json()
        assert "/api/v1/alerts/trigger" in body["endpoints"]

    def test_alerts_health(self, client):
        body = client.get("/api/v1/alerts/health").json()
        assert body["status"] == "healthy"
        assert body["push_provider"] == "simulation"

    def test_liveness(self, client):
        assert client.get("/health/live").json() == {"status": "alive"}

    def test_readiness_with_dispatcher(self, client, push, monkeypatch):
        monkeypatch.setattr(app.state, "dispatcher", Dispatcher(_make_store(), push), raising=False)
        resp = client.get("/health/ready")
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "healthy"
        assert {c["name"] for c in body["components"]} == {"record_store", "push_transport"}

    def test_readiness_unhealthy_fcm(self, client, monkeypatch):
        from sosalert.app.alerts.channels.fcm_push import FcmPushTransport
        from sosalert.app.core.config import settings

        monkeypatch.setattr(settings, "FCM_PROJECT_ID", None)
        monkeypatch.setattr(settings, "FCM_CREDENTIALS_FILE", None)
        dispatcher = Dispatcher(_make_store(), FcmPushTransport())
        monkeypatch.setattr(app.state, "dispatcher", dispatcher, raising=False)
        resp = client.get("/health/ready")
        assert resp.status_code == 503
        assert resp.json()["status"] == "unhealthy"


# ═══════════════════════════════════════════════════════════════════════════
# Server runner
# ═══════════════════════════════════════════════════════════════════════════

class TestRun:

    def test_server_settings_passed_to_uvicorn(self, monkeypatch):
        from sosalert.app import main
        from sosalert.app.core.config import settings

        calls = []
        monkeypatch.setattr(main.uvicorn, "run", lambda target, **kw: calls.append((target, kw)))
        monkeypatch.setattr(settings, "HOST", "127.0.0.1")
        monkeypatch.setattr(settings, "PORT", 9090)
        monkeypatch.setattr(settings, "WORKERS", 2)
        monkeypatch.setattr(settings, "RELOAD", False)

        main.run()

        target, kwargs = calls[0]
        assert target == "sosalert.app.main:app"
        assert kwargs["host"] == "127.0.0.1"
        assert kwargs["port"] == 9090
        assert kwargs["workers"] == 2
        assert kwargs["reload"] is False
