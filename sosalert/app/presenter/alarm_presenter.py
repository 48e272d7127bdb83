"""
alarm_presenter.py - Device-side alarm state machine.

═══════════════════════════════════════════════════════════════════════════
STATES & TRANSITIONS
═══════════════════════════════════════════════════════════════════════════

    Idle ──start(alertId)──▶ Alerting{startedAt, deadline}
                                │
               dismiss / host stop / deadline fired / shutdown
                                │
                                ▼
                            Stopping ──done──▶ Idle

    start, in order:
        1. notification channel ensured
        2. alarm volume raised to maximum (never restored)
        3. looping alarm sound started
        4. persistent notification posted (open + DISMISS actions)
        5. foreground elevation
        6. deadline timer armed (ALARM_TIMEOUT_SECONDS, default 60)
    Any failure → emergency stop → Idle. start never raises.

    stop, each release guarded on its own:
        playback stop + release, timer cancel, notification cancel,
        foreground release. Always ends in Idle.

═══════════════════════════════════════════════════════════════════════════
CONCURRENCY
═══════════════════════════════════════════════════════════════════════════

All state changes happen on one asyncio event loop. The deadline is a
loop.call_later handle owned by the session; every exit path cancels it.
Other threads (notification action receivers, host callbacks) go through
post_stop(), which hops onto the loop with call_soon_threadsafe, so the
stop sequence never runs twice at once.

Re-entrancy: start while Alerting is a no-op (ALREADY_ALERTING); start
for an alert id presented recently is a no-op (DUPLICATE). A device
callback that stops the session while start is still running ends start
with INTERRUPTED; whatever setup acquired after the stop is released.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from datetime import datetime, timezone
from typing import Callable, Deque, Optional

from sosalert.app.core.config import settings
from sosalert.app.presenter.device import (
    DISMISS_ACTION,
    OPEN_ACTION,
    AlarmNotification,
    DeviceServices,
    NotificationChannelSpec,
)
from sosalert.app.presenter.session import (
    AlarmSession,
    AlarmState,
    StartResult,
    StopReason,
)

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class _SetupInterrupted(Exception):
    """The session was stopped by a device callback while start was running."""


class AlarmPresenter:
    """
    Single-instance alarm owner for one device.

    Usage (inside a running event loop):
        presenter = AlarmPresenter(SimulatedDevice().services())
        presenter.start("ALR-123")
        ...
        presenter.stop(StopReason.DISMISSED)
    """

    def __init__(
        self,
        device: DeviceServices,
        *,
        timeout_seconds: Optional[float] = None,
        loop: Optional[asyncio.AbstractEventLoop] = None,
        clock: Callable[[], datetime] = _now,
        sound: Optional[str] = None,
        channel_id: Optional[str] = None,
        notification_id: Optional[int] = None,
        remember: Optional[int] = None,
    ):
        self.device = device
        self.timeout_seconds = (
            timeout_seconds if timeout_seconds is not None
            else settings.ALARM_TIMEOUT_SECONDS
        )
        self.sound = sound or settings.ALARM_SOUND
        self.channel_id = channel_id or settings.ALARM_NOTIFICATION_CHANNEL_ID
        self.notification_id = (
            notification_id if notification_id is not None
            else settings.ALARM_NOTIFICATION_ID
        )
        self._loop = loop
        self._clock = clock
        self._state = AlarmState.IDLE
        self._session: Optional[AlarmSession] = None
        self._presented: Deque[str] = deque(maxlen=remember or settings.PRESENTED_ALERT_MEMORY)
        self.last_stop_reason: Optional[StopReason] = None

    # ── Introspection ──

    @property
    def state(self) -> AlarmState:
        return self._state

    @property
    def session(self) -> Optional[AlarmSession]:
        return self._session

    @property
    def is_alerting(self) -> bool:
        return self._state == AlarmState.ALERTING

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    # ── Start ──

    def _ensure_current(self, session: AlarmSession) -> None:
        if self._session is not session:
            raise _SetupInterrupted(session.alert_id)

    def start(self, alert_id: str) -> StartResult:
        """Begin alerting for `alert_id`. Must run on the presenter's loop."""
        if self._state != AlarmState.IDLE:
            logger.info(
                "Start for %s ignored: already %s", alert_id, self._state.value,
                extra={"alert_id": alert_id, "alarm_state": self._state.value},
            )
            return StartResult.ALREADY_ALERTING
        if alert_id in self._presented:
            logger.info(
                "Start for %s ignored: alert already presented", alert_id,
                extra={"alert_id": alert_id},
            )
            return StartResult.DUPLICATE

        session = AlarmSession(
            alert_id=alert_id,
            timeout_seconds=self.timeout_seconds,
            started_at=self._clock(),
        )
        self._session = session
        self._state = AlarmState.ALERTING

        # Device calls may dismiss synchronously; re-check the session after each
        try:
            loop = self._get_loop()
            self.device.notifications.create_channel(
                NotificationChannelSpec(channel_id=self.channel_id)
            )
            self._ensure_current(session)

            audio = self.device.audio
            audio.set_alarm_volume(audio.max_alarm_volume())
            self._ensure_current(session)

            session.playback = self.device.player.play_looping(self.sound)
            self._ensure_current(session)

            notification = AlarmNotification(
                notification_id=self.notification_id,
                channel_id=self.channel_id,
                alert_id=alert_id,
            )
            self.device.notifications.post(notification)
            session.notification = notification
            self._ensure_current(session)

            self.device.foreground.elevate(notification)
            session.foreground_elevated = True
            self._ensure_current(session)

            session.timer = loop.call_later(
                self.timeout_seconds, self._on_deadline, session,
            )
        except _SetupInterrupted:
            logger.warning(
                "Alarm for %s stopped during setup (%s)", alert_id,
                self.last_stop_reason.value if self.last_stop_reason else "unknown",
                extra={"alert_id": alert_id},
            )
            self._release_resources(session)
            self._presented.append(alert_id)
            return StartResult.INTERRUPTED
        except Exception:
            logger.exception(
                "Alarm setup failed for %s, running emergency stop", alert_id,
                extra={"alert_id": alert_id},
            )
            self.stop(StopReason.SETUP_FAILED)
            self._release_resources(session)
            return StartResult.FAILED

        self._presented.append(alert_id)
        logger.info(
            "Alarm started for %s, deadline %s", alert_id, session.deadline.isoformat(),
            extra={"alert_id": alert_id, "alarm_state": self._state.value},
        )
        return StartResult.STARTED

    def _on_deadline(self, session: AlarmSession) -> None:
        if self._session is not session:
            return
        logger.info(
            "Alarm for %s expired after %.0fs", session.alert_id, self.timeout_seconds,
            extra={"alert_id": session.alert_id},
        )
        self.stop(StopReason.EXPIRED)

    # ── Stop ──

    def _release(self, what: str, action: Callable[[], None], alert_id: str) -> None:
        try:
            action()
        except Exception as exc:
            logger.warning(
                "Releasing %s failed for %s: %s", what, alert_id, exc,
                exc_info=True, extra={"alert_id": alert_id},
            )

    def _release_resources(self, session: AlarmSession, *, foreground: bool = False) -> None:
        """Release whatever the session still holds; each handle is dropped once released."""
        alert_id = session.alert_id
        playback, session.playback = session.playback, None
        if playback is not None:
            self._release("playback", playback.stop, alert_id)
            self._release("audio resource", playback.release, alert_id)

        timer, session.timer = session.timer, None
        if timer is not None:
            self._release("deadline timer", timer.cancel, alert_id)

        notification, session.notification = session.notification, None
        if notification is not None:
            self._release(
                "notification",
                lambda: self.device.notifications.cancel(notification.notification_id),
                alert_id,
            )

        if foreground or session.foreground_elevated:
            session.foreground_elevated = False
            self._release("foreground", self.device.foreground.release, alert_id)

    def stop(self, reason: StopReason = StopReason.HOST_REQUEST) -> bool:
        """
        Run the stop sequence. Idempotent; never raises.

        Returns True if a session was torn down, False if already idle.
        """
        session = self._session
        if session is None or self._state == AlarmState.STOPPING:
            return False

        self._state = AlarmState.STOPPING
        try:
            self._release_resources(session, foreground=True)
        finally:
            self._session = None
            self._state = AlarmState.IDLE
            self.last_stop_reason = reason

        logger.info(
            "Alarm for %s stopped (%s)", session.alert_id, reason.value,
            extra={"alert_id": session.alert_id, "alarm_state": self._state.value},
        )
        return True

    def post_stop(self, reason: StopReason = StopReason.HOST_REQUEST) -> None:
        """Schedule stop on the presenter's loop; safe from any thread."""
        loop = self._loop
        if loop is None:
            # start binds the loop, so nothing can be alerting yet
            logger.debug("Stop (%s) requested before any alarm started", reason.value)
            return
        loop.call_soon_threadsafe(self.stop, reason)

    def handle_action(self, action_id: str) -> bool:
        """Route a notification action. Only DISMISS stops the alarm."""
        if action_id == DISMISS_ACTION.action_id:
            return self.stop(StopReason.DISMISSED)
        if action_id == OPEN_ACTION.action_id:
            logger.info("Open-app action received; alarm keeps running until dismissed")
            return False
        logger.warning("Unknown notification action: %s", action_id)
        return False

    def close(self) -> None:
        """Host is tearing the presenter down."""
        self.stop(StopReason.SHUTDOWN)
