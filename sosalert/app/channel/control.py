"""
control.py - AlertChannel: the method-call surface the host app talks to.

    startCriticalAlert   → presenter.start (after permission checks)
    stopCriticalAlert    → presenter.stop
    triggerCriticalAlert → TriggerClient.trigger (server dispatch)
    on_push_message      → decode "critical_alert" data → start

Every call answers with a ChannelResult instead of raising, mirroring a
platform method channel: success + message, or an error code + message.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional

import httpx

from sosalert.app.channel.messages import ReceivedAlert, decode_push_message
from sosalert.app.channel.trigger_client import TriggerClient
from sosalert.app.core.errors import AlertAPIError
from sosalert.app.core.logging_config import log_context
from sosalert.app.presenter.alarm_presenter import AlarmPresenter
from sosalert.app.presenter.device import PermissionChecker
from sosalert.app.presenter.session import StartResult, StopReason

logger = logging.getLogger(__name__)


class ChannelErrorCode(str, Enum):
    PERMISSION_DENIED       = "PERMISSION_DENIED"
    AUDIO_PERMISSION_DENIED = "AUDIO_PERMISSION_DENIED"
    SERVICE_ERROR           = "SERVICE_ERROR"
    NOT_IMPLEMENTED         = "NOT_IMPLEMENTED"
    TRIGGER_UNAVAILABLE     = "TRIGGER_UNAVAILABLE"


@dataclass(frozen=True)
class ChannelResult:
    success: bool
    message: str
    code: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, message: str, **data: Any) -> "ChannelResult":
        return cls(True, message, data=data)

    @classmethod
    def error(cls, code: str, message: str, **data: Any) -> "ChannelResult":
        return cls(False, message, code=code, data=data)


START_MESSAGES = {
    StartResult.STARTED: "Critical alert started successfully",
    StartResult.ALREADY_ALERTING: "Critical alert already active",
    StartResult.DUPLICATE: "Critical alert already presented",
    StartResult.INTERRUPTED: "Critical alert dismissed while starting",
}


class AlertChannel:
    """
    Host-facing adapter around one AlarmPresenter (and optionally a
    TriggerClient for raising alerts).
    """

    def __init__(
        self,
        presenter: AlarmPresenter,
        permissions: PermissionChecker,
        trigger_client: Optional[TriggerClient] = None,
    ):
        self.presenter = presenter
        self.permissions = permissions
        self.trigger_client = trigger_client
        self.last_received: Optional[ReceivedAlert] = None

    # ── startCriticalAlert ──

    def start_critical_alert(self, alert_id: Optional[str] = None) -> ChannelResult:
        if not self.permissions.notification_policy_granted():
            self.permissions.request_notification_policy_access()
            return ChannelResult.error(
                ChannelErrorCode.PERMISSION_DENIED.value,
                "DND permission not granted. Please grant notification policy access.",
            )
        if not self.permissions.audio_settings_granted():
            self.permissions.request_audio_settings_permission()
            return ChannelResult.error(
                ChannelErrorCode.AUDIO_PERMISSION_DENIED.value,
                "Audio settings permission required for volume control. Please grant permission.",
            )

        alert_id = alert_id or f"local-{uuid.uuid4().hex[:12]}"
        try:
            result = self.presenter.start(alert_id)
        except Exception as exc:
            logger.exception("Presenter start crashed for %s", alert_id)
            return ChannelResult.error(
                ChannelErrorCode.SERVICE_ERROR.value,
                f"Failed to start critical alert service: {exc}",
            )

        if result == StartResult.FAILED:
            return ChannelResult.error(
                ChannelErrorCode.SERVICE_ERROR.value,
                "Failed to start critical alert service: alarm setup failed",
                alert_id=alert_id,
            )
        return ChannelResult.ok(START_MESSAGES[result], alert_id=alert_id, result=result.value)

    # ── stopCriticalAlert ──

    def stop_critical_alert(self) -> ChannelResult:
        try:
            stopped = self.presenter.stop(StopReason.HOST_REQUEST)
        except Exception as exc:
            logger.exception("Presenter stop crashed")
            return ChannelResult.error(
                ChannelErrorCode.SERVICE_ERROR.value,
                f"Failed to stop critical alert service: {exc}",
            )
        return ChannelResult.ok("Critical alert stopped successfully", stopped=stopped)

    # ── triggerCriticalAlert ──

    async def trigger(self, target_id: str, actor_id: Optional[str] = None) -> ChannelResult:
        if self.trigger_client is None:
            return ChannelResult.error(
                ChannelErrorCode.TRIGGER_UNAVAILABLE.value,
                "No trigger endpoint configured",
            )
        try:
            response = await self.trigger_client.trigger(target_id, actor_id=actor_id)
        except AlertAPIError as exc:
            return ChannelResult.error(exc.error_code, exc.message)
        except httpx.HTTPError as exc:
            logger.error("Trigger request for %s failed: %s", target_id, exc)
            return ChannelResult.error(
                ChannelErrorCode.TRIGGER_UNAVAILABLE.value,
                f"Could not reach alert service: {exc}",
            )
        return ChannelResult(
            success=response.success,
            message=response.message,
            data=response.model_dump(),
        )

    # ── Incoming push ──

    def on_push_message(self, data: Mapping[str, Any]) -> Optional[ChannelResult]:
        """Start the alarm for a received critical alert; ignore anything else."""
        alert = decode_push_message(data)
        if alert is None:
            return None
        self.last_received = alert
        with log_context(alert_id=alert.alert_id):
            logger.info("Critical alert received (triggered by %s)", alert.triggered_by)
            return self.start_critical_alert(alert.alert_id)

    # ── Generic method-call entry ──

    async def handle_method_call(
        self,
        method: str,
        arguments: Optional[Mapping[str, Any]] = None,
    ) -> ChannelResult:
        arguments = arguments or {}
        if method == "startCriticalAlert":
            return self.start_critical_alert(arguments.get("alertId"))
        if method == "stopCriticalAlert":
            return self.stop_critical_alert()
        if method == "triggerCriticalAlert":
            target_id = arguments.get("targetId") or arguments.get("targetUserId")
            return await self.trigger(target_id, actor_id=arguments.get("actorId"))
        return ChannelResult.error(
            ChannelErrorCode.NOT_IMPLEMENTED.value,
            f"Method '{method}' is not implemented",
        )
