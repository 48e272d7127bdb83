"""
test_alert_channel.py - Tests for the host-facing AlertChannel.

Covers:
    • startCriticalAlert / stopCriticalAlert results and permission gates
    • Method-call routing (including unknown methods)
    • Push data decoding → alarm start
    • triggerCriticalAlert through TriggerClient (mock HTTP and the real app)

Run with:
    pytest tests/test_alert_channel.py -v
"""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone

import httpx

from sosalert.app.alerts.channels.simulated_push import SimulatedPushTransport
from sosalert.app.alerts.dispatcher import Dispatcher
from sosalert.app.alerts.payload_builder import build_envelope
from sosalert.app.alerts.record_store import InMemoryRecordStore
from sosalert.app.api.v1.alerts import get_dispatcher
from sosalert.app.channel.control import AlertChannel, ChannelErrorCode
from sosalert.app.channel.messages import decode_push_message
from sosalert.app.channel.trigger_client import TriggerClient
from sosalert.app.main import app
from sosalert.app.presenter.alarm_presenter import AlarmPresenter
from sosalert.app.presenter.device import SimulatedDevice
from sosalert.app.presenter.session import AlarmState


NOW = datetime(2024, 3, 1, 9, 30, tzinfo=timezone.utc)


def _make_channel(device=None, trigger_client=None):
    device = device or SimulatedDevice()
    presenter = AlarmPresenter(device.services())
    return device, presenter, AlertChannel(presenter, device, trigger_client)


def _push_data(alert_id="ALR-9"):
    record = {"fullName": "Asha Verma", "medicalInfo": {"bloodGroup": "O+"}}
    return build_envelope(record, "staff-9", alert_id, NOW, target_id="T1").to_push_data()


def _run(coro):
    return asyncio.run(coro)


class FailingPostDevice(SimulatedDevice):
    def post(self, notification):
        raise RuntimeError("notification service unavailable")


# ═══════════════════════════════════════════════════════════════════════════
# Section 1: start / stop
# ═══════════════════════════════════════════════════════════════════════════

class TestStartStop:

    def test_start_success(self):
        async def scenario():
            device, presenter, channel = _make_channel()
            result = await channel.handle_method_call("startCriticalAlert")
            state = presenter.state
            presenter.close()
            return result, state

        result, state = _run(scenario())
        assert result.success is True
        assert result.message == "Critical alert started successfully"
        assert result.data["alert_id"].startswith("local-")
        assert state == AlarmState.ALERTING

    def test_start_with_alert_id(self):
        async def scenario():
            _, presenter, channel = _make_channel()
            result = await channel.handle_method_call("startCriticalAlert", {"alertId": "ALR-1"})
            alert_id = presenter.session.alert_id
            presenter.close()
            return result, alert_id

        result, alert_id = _run(scenario())
        assert result.data["alert_id"] == "ALR-1"
        assert alert_id == "ALR-1"

    def test_notification_policy_denied(self):
        async def scenario():
            device, presenter, channel = _make_channel(SimulatedDevice(policy_granted=False))
            return device, presenter, channel.start_critical_alert()

        device, presenter, result = _run(scenario())
        assert result.success is False
        assert result.code == ChannelErrorCode.PERMISSION_DENIED.value
        assert device.permission_requests == ["notification_policy"]
        assert presenter.state == AlarmState.IDLE
        assert device.playbacks == []

    def test_audio_permission_denied(self):
        async def scenario():
            device, presenter, channel = _make_channel(SimulatedDevice(audio_granted=False))
            return device, channel.start_critical_alert()

        device, result = _run(scenario())
        assert result.code == ChannelErrorCode.AUDIO_PERMISSION_DENIED.value
        assert device.permission_requests == ["modify_audio_settings"]

    def test_setup_failure_is_service_error(self):
        async def scenario():
            _, presenter, channel = _make_channel(FailingPostDevice())
            return presenter, channel.start_critical_alert("ALR-1")

        presenter, result = _run(scenario())
        assert result.code == ChannelErrorCode.SERVICE_ERROR.value
        assert result.message.startswith("Failed to start critical alert service")
        assert presenter.state == AlarmState.IDLE

    def test_start_while_active(self):
        async def scenario():
            _, presenter, channel = _make_channel()
            channel.start_critical_alert("ALR-1")
            result = channel.start_critical_alert("ALR-2")
            presenter.close()
            return result

        result = _run(scenario())
        assert result.success is True
        assert result.message == "Critical alert already active"

    def test_stop(self):
        async def scenario():
            device, presenter, channel = _make_channel()
            await channel.handle_method_call("startCriticalAlert")
            result = await channel.handle_method_call("stopCriticalAlert")
            return device, presenter, result

        device, presenter, result = _run(scenario())
        assert result.success is True
        assert result.message == "Critical alert stopped successfully"
        assert presenter.state == AlarmState.IDLE
        assert device.is_playing is False

    def test_stop_when_idle_succeeds(self):
        _, _, channel = _make_channel()
        result = channel.stop_critical_alert()
        assert result.success is True
        assert result.data["stopped"] is False

    def test_unknown_method(self):
        _, _, channel = _make_channel()
        result = _run(channel.handle_method_call("snoozeCriticalAlert"))
        assert result.success is False
        assert result.code == ChannelErrorCode.NOT_IMPLEMENTED.value


# ═══════════════════════════════════════════════════════════════════════════
# Section 2: incoming push messages
# ═══════════════════════════════════════════════════════════════════════════

class TestPushMessages:

    def test_decode(self):
        alert = decode_push_message(_push_data())
        assert alert.alert_id == "ALR-9"
        assert alert.triggered_by == "staff-9"
        assert alert.student_name == "Asha Verma"
        assert alert.student_info["medicalInfo"] == {"bloodGroup": "O+"}

    def test_other_message_types_ignored(self):
        assert decode_push_message({"type": "chat", "alertId": "x"}) is None

    def test_missing_alert_id_ignored(self):
        data = _push_data()
        del data["alertId"]
        assert decode_push_message(data) is None

    def test_bad_student_info_still_alerts(self):
        data = _push_data()
        data["studentInfo"] = "{not json"
        alert = decode_push_message(data)
        assert alert.alert_id == "ALR-9"
        assert alert.student_info == {}

    def test_push_starts_alarm(self):
        async def scenario():
            device, presenter, channel = _make_channel()
            result = channel.on_push_message(_push_data("ALR-77"))
            alert_id = presenter.session.alert_id
            presenter.close()
            return channel, result, alert_id

        channel, result, alert_id = _run(scenario())
        assert result.success is True
        assert alert_id == "ALR-77"
        assert channel.last_received.alert_id == "ALR-77"

    def test_redelivered_push_does_not_restart(self):
        async def scenario():
            _, presenter, channel = _make_channel()
            channel.on_push_message(_push_data("ALR-77"))
            presenter.stop()
            result = channel.on_push_message(_push_data("ALR-77"))
            state = presenter.state
            return result, state

        result, state = _run(scenario())
        assert result.message == "Critical alert already presented"
        assert state == AlarmState.IDLE

    def test_non_alert_push_returns_none(self):
        _, _, channel = _make_channel()
        assert channel.on_push_message({"type": "chat"}) is None


# ═══════════════════════════════════════════════════════════════════════════
# Section 3: triggerCriticalAlert
# ═══════════════════════════════════════════════════════════════════════════

def _trigger_via(handler, arguments):
    async def go():
        client = TriggerClient(
            "http://alerts.test",
            client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )
        _, _, channel = _make_channel(trigger_client=client)
        try:
            return await channel.handle_method_call("triggerCriticalAlert", arguments)
        finally:
            await client.close()

    return _run(go())


class TestTrigger:

    def test_success(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={
                "success": True, "alertId": "ALR-1", "sentCount": 2, "failedCount": 0,
                "message": "Alert triggered successfully. Sent to 2 device(s).",
            })

        result = _trigger_via(handler, {"targetId": "T1", "actorId": "staff-9"})
        assert result.success is True
        assert result.data["alertId"] == "ALR-1"
        assert result.data["sentCount"] == 2
        assert seen[0].url.path == "/api/v1/alerts/trigger"
        assert json.loads(seen[0].content) == {"targetId": "T1"}
        assert seen[0].headers["X-Actor-Id"] == "staff-9"

    def test_server_error_code_passed_through(self):
        def handler(request):
            return httpx.Response(412, json={"error": {
                "code": "failed-precondition",
                "message": "Target user has no assigned responders",
                "status": 412,
            }})

        result = _trigger_via(handler, {"targetUserId": "T1"})
        assert result.success is False
        assert result.code == "failed-precondition"
        assert result.message == "Target user has no assigned responders"

    def test_unparseable_error_body(self):
        def handler(request):
            return httpx.Response(503, text="upstream down")

        result = _trigger_via(handler, {"targetId": "T1"})
        assert result.code == "internal"

    def test_unreachable_service(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        result = _trigger_via(handler, {"targetId": "T1"})
        assert result.code == ChannelErrorCode.TRIGGER_UNAVAILABLE.value

    def test_no_client_configured(self):
        _, _, channel = _make_channel()
        result = _run(channel.trigger("T1"))
        assert result.code == ChannelErrorCode.TRIGGER_UNAVAILABLE.value

    def test_against_app(self):
        store = InMemoryRecordStore({
            "T1": {"fullName": "Asha", "assignedResponders": ["R1"]},
            "R1": {"fcmToken": "tok-r1"},
        })
        push = SimulatedPushTransport()
        dispatcher = Dispatcher(store, push)
        app.dependency_overrides[get_dispatcher] = lambda: dispatcher

        async def go():
            http = httpx.AsyncClient(transport=httpx.ASGITransport(app=app))
            client = TriggerClient("http://testserver", client=http)
            try:
                return await client.trigger("T1", actor_id="staff-9")
            finally:
                await client.close()

        try:
            response = _run(go())
        finally:
            app.dependency_overrides.clear()

        assert response.success is True
        assert response.sentCount == 1
        assert push.sent[0].data["triggeredBy"] == "staff-9"
