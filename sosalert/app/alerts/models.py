"""
models.py - Shared data structures for the critical alert dispatcher.

Defines:
    • ResponderSet   - ordered, de-duplicated responder ids for one target
    • AlertTarget    - immutable snapshot of the person the alert concerns
    • AlertEnvelope  - the payload built once per trigger
    • SendOutcome    - transport result for one delivery address
    • DispatchResult - aggregated outcome of one trigger

═══════════════════════════════════════════════════════════════════════════
RECORD SCHEMA CONSUMED
═══════════════════════════════════════════════════════════════════════════

    users/{targetId}
        assignedResponders : [responderId, ...]   (anything else → empty)
        fullName, email, contact, guardianContact,
        enrollmentNumber, accommodationType, hostelWingAndRoom,
        permanentHomeAddress, medicalInfo{...}

    users/{responderId}
        fcmToken : str | absent

Fields missing from a target record are carried as None (medicalInfo as
an empty mapping) so the receiving device always sees the same keys.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Dict, Iterable, Iterator, Mapping, Optional, Tuple

ALERT_TYPE = "critical_alert"

RESPONDERS_FIELD = "assignedResponders"
TOKEN_FIELD = "fcmToken"

# Target record key → snapshot attribute
TARGET_FIELDS: Tuple[Tuple[str, str], ...] = (
    ("fullName", "full_name"),
    ("email", "email"),
    ("contact", "contact"),
    ("guardianContact", "guardian_contact"),
    ("enrollmentNumber", "enrollment_number"),
    ("accommodationType", "accommodation_type"),
    ("hostelWingAndRoom", "hostel_wing_and_room"),
    ("permanentHomeAddress", "permanent_home_address"),
)


def generate_alert_id() -> str:
    """Globally unique alert id, created before any lookup."""
    return f"ALR-{uuid.uuid4().hex.upper()}"


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ═══════════════════════════════════════════════════════════════════════════
# Responders
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class ResponderSet:
    """Ordered responder ids; duplicates collapse to the first occurrence."""
    responder_ids: Tuple[str, ...] = ()

    @classmethod
    def from_raw(cls, raw: Any) -> "ResponderSet":
        if not isinstance(raw, (list, tuple)):
            return cls()
        seen: Dict[str, None] = {}
        for item in raw:
            if isinstance(item, str) and item.strip():
                seen.setdefault(item.strip(), None)
        return cls(tuple(seen))

    def __iter__(self) -> Iterator[str]:
        return iter(self.responder_ids)

    def __len__(self) -> int:
        return len(self.responder_ids)

    @property
    def is_empty(self) -> bool:
        return not self.responder_ids


# ═══════════════════════════════════════════════════════════════════════════
# Target snapshot
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class AlertTarget:
    """Immutable snapshot of the target record taken at trigger time."""
    target_id: str
    full_name: Optional[Any] = None
    email: Optional[Any] = None
    contact: Optional[Any] = None
    guardian_contact: Optional[Any] = None
    enrollment_number: Optional[Any] = None
    accommodation_type: Optional[Any] = None
    hostel_wing_and_room: Optional[Any] = None
    permanent_home_address: Optional[Any] = None
    medical_info: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    responders: ResponderSet = field(default_factory=ResponderSet)

    @classmethod
    def from_record(cls, target_id: str, document: Mapping[str, Any]) -> "AlertTarget":
        values = {attr: document.get(key) for key, attr in TARGET_FIELDS}
        medical = document.get("medicalInfo")
        return cls(
            target_id=str(document.get("uid") or target_id),
            medical_info=MappingProxyType(dict(medical) if isinstance(medical, Mapping) else {}),
            responders=ResponderSet.from_raw(document.get(RESPONDERS_FIELD)),
            **values,
        )

    def to_student_info(self) -> Dict[str, Any]:
        """The structured snapshot shipped to every responder device."""
        info: Dict[str, Any] = {"uid": self.target_id}
        for key, attr in TARGET_FIELDS:
            info[key] = getattr(self, attr)
        info["medicalInfo"] = dict(self.medical_info)
        return info


# ═══════════════════════════════════════════════════════════════════════════
# Envelope
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class AlertEnvelope:
    """The immutable message constructed once per trigger."""
    alert_id: str
    target: AlertTarget
    triggered_by: str
    created_at: datetime = field(default_factory=_now)

    def to_push_data(self) -> Dict[str, str]:
        """Flat string map for push data messages (nested values JSON-encoded)."""
        return {
            "alertId": self.alert_id,
            "type": ALERT_TYPE,
            "studentInfo": json.dumps(self.target.to_student_info(), default=str),
            "triggeredBy": self.triggered_by,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "alertId": self.alert_id,
            "type": ALERT_TYPE,
            "studentInfo": self.target.to_student_info(),
            "triggeredBy": self.triggered_by,
            "timestamp": self.created_at.isoformat(),
        }


# ═══════════════════════════════════════════════════════════════════════════
# Delivery outcomes
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class SendOutcome:
    """Transport result for a single delivery address."""
    token: str
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class DispatchResult:
    """Aggregated outcome of one trigger; never mutated after return."""
    alert_id: str
    sent_count: int
    failed_count: int
    failures: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    unreachable_responders: Tuple[str, ...] = ()

    @classmethod
    def from_outcomes(
        cls,
        alert_id: str,
        outcomes: Iterable[SendOutcome],
        unreachable_responders: Iterable[str] = (),
    ) -> "DispatchResult":
        sent = failed = 0
        failures: Dict[str, str] = {}
        for outcome in outcomes:
            if outcome.success:
                sent += 1
            else:
                failed += 1
                failures[outcome.token] = outcome.error or "unknown error"
        return cls(
            alert_id=alert_id,
            sent_count=sent,
            failed_count=failed,
            failures=MappingProxyType(failures),
            unreachable_responders=tuple(unreachable_responders),
        )

    @property
    def success(self) -> bool:
        return self.sent_count > 0

    @property
    def message(self) -> str:
        if not self.success:
            return f"Alert could not be delivered. All {self.failed_count} send(s) failed."
        return (
            "Alert triggered successfully. "
            f"Sent to {self.sent_count} device(s)."
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "alertId": self.alert_id,
            "sentCount": self.sent_count,
            "failedCount": self.failed_count,
            "message": self.message,
            "unreachableResponders": list(self.unreachable_responders),
        }
