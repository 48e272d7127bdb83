"""
device.py - Ports to the device OS services the alarm presenter drives.

    AudioController       alarm-stream volume
    AlarmPlayer           looping sound playback → PlaybackHandle
    NotificationCenter    notification channels + persistent notifications
    ForegroundController  process priority elevation
    PermissionChecker     host-side preconditions (checked by AlertChannel)

The presenter assumes permissions already hold; only the control surface
checks them. `SimulatedDevice` implements every port with log output for
local runs.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Tuple

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Notification content
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class NotificationChannelSpec:
    channel_id: str
    name: str = "Critical Alert Channel"
    description: str = "Channel for critical emergency alerts"
    importance: str = "high"
    lights: bool = True
    vibration: bool = True
    show_badge: bool = True


@dataclass(frozen=True)
class NotificationAction:
    action_id: str
    title: str
    implicit: bool = False  # fired by tapping the notification body


OPEN_ACTION = NotificationAction("open_app", "Open", implicit=True)
DISMISS_ACTION = NotificationAction("dismiss_alert", "DISMISS")


@dataclass(frozen=True)
class AlarmNotification:
    """Persistent, high-priority notification posted while alerting."""
    notification_id: int
    channel_id: str
    alert_id: str
    title: str = "🚨 EMERGENCY ALERT 🚨"
    text: str = "This is a critical emergency alert. Tap to acknowledge."
    priority: str = "max"
    category: str = "alarm"
    full_screen: bool = True
    ongoing: bool = True
    auto_cancel: bool = False
    actions: Tuple[NotificationAction, ...] = (OPEN_ACTION, DISMISS_ACTION)


# ═══════════════════════════════════════════════════════════════════════════
# Ports
# ═══════════════════════════════════════════════════════════════════════════

class PlaybackHandle(Protocol):
    def stop(self) -> None: ...

    def release(self) -> None: ...


class AudioController(Protocol):
    def max_alarm_volume(self) -> int: ...

    def set_alarm_volume(self, level: int) -> None: ...


class AlarmPlayer(Protocol):
    def play_looping(self, sound: str) -> PlaybackHandle: ...


class NotificationCenter(Protocol):
    def create_channel(self, spec: NotificationChannelSpec) -> None: ...

    def post(self, notification: AlarmNotification) -> None: ...

    def cancel(self, notification_id: int) -> None: ...


class ForegroundController(Protocol):
    def elevate(self, notification: AlarmNotification) -> None: ...

    def release(self) -> None: ...


class PermissionChecker(Protocol):
    def notification_policy_granted(self) -> bool: ...

    def audio_settings_granted(self) -> bool: ...

    def request_notification_policy_access(self) -> None: ...

    def request_audio_settings_permission(self) -> None: ...


@dataclass
class DeviceServices:
    """Bundle of device ports handed to one AlarmPresenter."""
    audio: AudioController
    player: AlarmPlayer
    notifications: NotificationCenter
    foreground: ForegroundController


# ═══════════════════════════════════════════════════════════════════════════
# Simulated device (development / tests)
# ═══════════════════════════════════════════════════════════════════════════

class SimulatedPlayback:
    def __init__(self, sound: str):
        self.sound = sound
        self.playing = True
        self.released = False

    def stop(self) -> None:
        self.playing = False

    def release(self) -> None:
        self.released = True


@dataclass
class SimulatedDevice:
    """
    In-process device: records every call and logs it.

    Implements AudioController, AlarmPlayer, NotificationCenter,
    ForegroundController and PermissionChecker at once.
    """
    max_volume: int = 7
    volume: int = 3
    policy_granted: bool = True
    audio_granted: bool = True
    channels: Dict[str, NotificationChannelSpec] = field(default_factory=dict)
    posted: Dict[int, AlarmNotification] = field(default_factory=dict)
    playbacks: List[SimulatedPlayback] = field(default_factory=list)
    foreground: Optional[AlarmNotification] = None
    permission_requests: List[str] = field(default_factory=list)

    def services(self) -> DeviceServices:
        return DeviceServices(audio=self, player=self, notifications=self, foreground=self)

    # AudioController
    def max_alarm_volume(self) -> int:
        return self.max_volume

    def set_alarm_volume(self, level: int) -> None:
        logger.info("[DEVICE] Alarm volume %d → %d", self.volume, level)
        self.volume = level

    # AlarmPlayer
    def play_looping(self, sound: str) -> SimulatedPlayback:
        logger.info("[DEVICE] Looping sound '%s'", sound)
        playback = SimulatedPlayback(sound)
        self.playbacks.append(playback)
        return playback

    # NotificationCenter
    def create_channel(self, spec: NotificationChannelSpec) -> None:
        self.channels[spec.channel_id] = spec

    def post(self, notification: AlarmNotification) -> None:
        logger.info("[DEVICE] Notification %d posted: %s", notification.notification_id, notification.title)
        self.posted[notification.notification_id] = notification

    def cancel(self, notification_id: int) -> None:
        self.posted.pop(notification_id, None)

    # ForegroundController
    def elevate(self, notification: AlarmNotification) -> None:
        self.foreground = notification

    def release(self) -> None:
        self.foreground = None

    # PermissionChecker
    def notification_policy_granted(self) -> bool:
        return self.policy_granted

    def audio_settings_granted(self) -> bool:
        return self.audio_granted

    def request_notification_policy_access(self) -> None:
        self.permission_requests.append("notification_policy")

    def request_audio_settings_permission(self) -> None:
        self.permission_requests.append("modify_audio_settings")

    @property
    def is_playing(self) -> bool:
        return any(p.playing for p in self.playbacks)

    def describe(self) -> Dict[str, Any]:
        return {
            "volume": self.volume,
            "playing": self.is_playing,
            "notifications": sorted(self.posted),
            "foreground": self.foreground is not None,
        }
