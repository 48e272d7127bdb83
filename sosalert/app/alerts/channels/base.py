"""
base.py - Multicast message contract shared by every push transport.

One message per trigger:

    tokens   : every usable delivery address, de-duplicated, input order
    data     : {alertId, type="critical_alert", studentInfo (JSON), triggeredBy}
    android  : priority high
    apns     : apns-priority 10, default sound, content-available (background wake)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Protocol, Sequence, Tuple

from sosalert.app.alerts.models import AlertEnvelope, SendOutcome


@dataclass(frozen=True)
class MulticastMessage:
    """A single payload addressed to many device tokens."""
    tokens: Tuple[str, ...]
    data: Dict[str, str]
    android: Dict[str, Any] = field(default_factory=lambda: {"priority": "high"})
    apns: Dict[str, Any] = field(default_factory=lambda: {
        "headers": {"apns-priority": "10"},
        "payload": {"aps": {"sound": "default", "content-available": 1}},
    })

    @property
    def alert_id(self) -> str:
        return self.data.get("alertId", "")

    def for_token(self, token: str) -> Dict[str, Any]:
        """Single-device message body (FCM HTTP v1 shape)."""
        return {
            "token": token,
            "data": dict(self.data),
            "android": {"priority": self.android.get("priority", "high").upper()},
            "apns": self.apns,
        }


def build_multicast_message(
    envelope: AlertEnvelope,
    tokens: Sequence[str],
) -> MulticastMessage:
    """Address one envelope to every token (duplicates collapse)."""
    unique: Dict[str, None] = dict.fromkeys(tokens)
    return MulticastMessage(tokens=tuple(unique), data=envelope.to_push_data())


class PushTransport(Protocol):
    """Fan-out sender: one outcome per token, in token order."""

    name: str

    async def send_multicast(self, message: MulticastMessage) -> List[SendOutcome]:
        ...

    async def close(self) -> None:
        ...
