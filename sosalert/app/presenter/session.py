"""
session.py - AlarmSession: the single live alarm on a device.

Owns the playback handle and the deadline timer exclusively. Created by
AlarmPresenter on a start from Idle, dropped when the stop sequence
completes.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Optional

from sosalert.app.presenter.device import AlarmNotification, PlaybackHandle


class AlarmState(str, Enum):
    """Presenter state machine."""
    IDLE     = "idle"
    ALERTING = "alerting"
    STOPPING = "stopping"  # transient, only inside the stop sequence


class StopReason(str, Enum):
    DISMISSED    = "dismissed"      # notification dismiss action
    HOST_REQUEST = "host_request"   # stopCriticalAlert from the host app
    EXPIRED      = "expired"        # deadline timer fired
    SETUP_FAILED = "setup_failed"   # emergency stop from start
    SHUTDOWN     = "shutdown"       # presenter torn down


class StartResult(str, Enum):
    STARTED          = "started"
    ALREADY_ALERTING = "already_alerting"
    DUPLICATE        = "duplicate"
    FAILED           = "failed"
    INTERRUPTED      = "interrupted"  # stopped while start was still setting up


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class AlarmSession:
    alert_id: str
    timeout_seconds: float
    started_at: datetime = field(default_factory=_now)
    playback: Optional[PlaybackHandle] = None
    notification: Optional[AlarmNotification] = None
    timer: Optional[asyncio.TimerHandle] = None
    foreground_elevated: bool = False

    @property
    def deadline(self) -> datetime:
        return self.started_at + timedelta(seconds=self.timeout_seconds)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "alert_id": self.alert_id,
            "started_at": self.started_at.isoformat(),
            "deadline": self.deadline.isoformat(),
            "playing": self.playback is not None,
            "timer_armed": self.timer is not None and not self.timer.cancelled(),
        }
