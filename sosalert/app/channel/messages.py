"""
messages.py - Decoding of received push data messages.

Push data arrives as a flat string map (see alerts.channels.base):

    {"alertId": "...", "type": "critical_alert",
     "studentInfo": "<json>", "triggeredBy": "..."}
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

from sosalert.app.alerts.models import ALERT_TYPE

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReceivedAlert:
    alert_id: str
    triggered_by: str = "anonymous"
    student_info: Dict[str, Any] = field(default_factory=dict)

    @property
    def student_name(self) -> Optional[str]:
        return self.student_info.get("fullName")


def decode_push_message(data: Mapping[str, Any]) -> Optional[ReceivedAlert]:
    """
    Turn a push data map into a ReceivedAlert.

    Returns None for messages of another type or without an alert id.
    A malformed studentInfo still yields an alert (with empty info):
    the alarm matters more than the details.
    """
    if data.get("type") != ALERT_TYPE:
        return None

    alert_id = data.get("alertId")
    if not isinstance(alert_id, str) or not alert_id:
        logger.warning("Critical alert message without alertId ignored")
        return None

    raw_info = data.get("studentInfo")
    info: Dict[str, Any] = {}
    if isinstance(raw_info, Mapping):
        info = dict(raw_info)
    elif isinstance(raw_info, str) and raw_info:
        try:
            parsed = json.loads(raw_info)
        except ValueError as exc:
            logger.warning("Undecodable studentInfo on %s: %s", alert_id, exc,
                           extra={"alert_id": alert_id})
        else:
            if isinstance(parsed, dict):
                info = parsed

    return ReceivedAlert(
        alert_id=alert_id,
        triggered_by=str(data.get("triggeredBy") or "anonymous"),
        student_info=info,
    )
