"""
payload_builder.py - Builds the AlertEnvelope for one trigger.

Pure: no I/O, no clock reads. The caller supplies the alert id and the
creation time, so two calls with the same inputs produce equal envelopes.

Only the enumerated target fields are copied (see models.TARGET_FIELDS);
anything else on the source record is dropped, and any enumerated field
missing from it is carried as None so the receiving side has a stable
schema.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Mapping, Union

from sosalert.app.alerts.models import AlertEnvelope, AlertTarget


def snapshot_target(target_id: str, record: Mapping[str, Any]) -> AlertTarget:
    """Copy the enumerated fields of a raw target record."""
    return AlertTarget.from_record(target_id, record)


def build_envelope(
    target: Union[AlertTarget, Mapping[str, Any]],
    actor_id: str,
    alert_id: str,
    now: datetime,
    *,
    target_id: str = "",
) -> AlertEnvelope:
    """
    Assemble the immutable alert envelope.

    Parameters
    ----------
    target : AlertTarget or mapping
        Target snapshot, or the raw target record (then `target_id`
        names it).
    actor_id : str
        Identity of whoever triggered the alert.
    alert_id : str
        Id generated at trigger time, before any lookup.
    now : datetime
        Creation timestamp.

    Returns
    -------
    AlertEnvelope
    """
    if not isinstance(target, AlertTarget):
        target = snapshot_target(target_id, target)
    return AlertEnvelope(
        alert_id=alert_id,
        target=target,
        triggered_by=actor_id,
        created_at=now,
    )
