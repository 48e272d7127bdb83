"""
simulated_push.py - Development push transport.

Logs every send and reports success, except for tokens listed in
`failing_tokens`, which fail with the configured reason. Lets the full
dispatch pipeline run locally without push credentials.
"""

from __future__ import annotations

import logging
import uuid
from typing import Iterable, List, Mapping, Optional

from sosalert.app.alerts.channels.base import MulticastMessage
from sosalert.app.alerts.models import SendOutcome
from sosalert.app.core.logging_config import abbreviate_token

logger = logging.getLogger(__name__)


class SimulatedPushTransport:
    """Push transport that never leaves the process."""

    name = "simulation"

    def __init__(self, failing_tokens: Optional[Mapping[str, str]] = None):
        self.failing_tokens = dict(failing_tokens or {})
        self.sent: List[MulticastMessage] = []

    def fail_tokens(self, tokens: Iterable[str], reason: str = "registration-token-not-registered") -> None:
        for token in tokens:
            self.failing_tokens[token] = reason

    async def send_multicast(self, message: MulticastMessage) -> List[SendOutcome]:
        self.sent.append(message)
        outcomes: List[SendOutcome] = []
        for token in message.tokens:
            reason = self.failing_tokens.get(token)
            if reason is not None:
                outcomes.append(SendOutcome(token=token, success=False, error=reason))
                continue
            logger.info(
                "[PUSH_SIM] Alert %s → %s",
                message.alert_id, abbreviate_token(token),
                extra={"alert_id": message.alert_id},
            )
            outcomes.append(SendOutcome(
                token=token,
                success=True,
                message_id=f"sim-{uuid.uuid4().hex[:12]}",
            ))
        return outcomes

    async def close(self) -> None:
        return None
