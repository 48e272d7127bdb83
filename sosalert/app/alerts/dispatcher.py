"""
dispatcher.py - Critical alert dispatch orchestration.

This is the central coordinator that:
    1. Generates the alert id (before any lookup)
    2. Loads the target record and its assigned responders
    3. Resolves every responder's delivery token concurrently
    4. Builds the envelope once
    5. Hands one multicast message to the push transport
    6. Aggregates per-token outcomes into a DispatchResult

═══════════════════════════════════════════════════════════════════════════
ORCHESTRATION FLOW
═══════════════════════════════════════════════════════════════════════════

    ┌─────────────────────┐
    │  trigger(targetId,  │  invalid-argument on empty / malformed id
    │          actorId)   │
    └─────────┬───────────┘
              │  alertId = ALR-…
              ▼
    ┌─────────────────────┐
    │  1. Target record   │  not-found if missing
    │     + responders    │  failed-precondition if none assigned
    └─────────┬───────────┘
              │
              ▼
    ┌─────────────────────┐
    │  2. Address fan-out │  one task per responder, run concurrently
    │     (gather)        │  a failing lookup is a None in its own slot
    └─────────┬───────────┘
              │  failed-precondition if no usable token
              ▼
    ┌─────────────────────┐
    │  3. Envelope        │  built once, shared by every device
    └─────────┬───────────┘
              │
              ▼
    ┌─────────────────────┐
    │  4. Multicast send  │  single transport call, outcomes in token order
    └─────────┬───────────┘
              │
              ▼
    ┌─────────────────────┐
    │  5. DispatchResult  │  sent / failed counts, reason per failed token
    └─────────────────────┘

═══════════════════════════════════════════════════════════════════════════
FAILURE ACCOUNTING
═══════════════════════════════════════════════════════════════════════════

    Responder without a token  → excluded before the send, listed in
                                 unreachable_responders, NOT in failed_count
    Token rejected by transport → failed_count += 1, reason recorded
    Some tokens accepted        → normal result (partial failure is not an error)
    Transport cannot run at all → internal (detail logged only)

No retries: a single fan-out attempt per trigger.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, List, Optional, Tuple

from sosalert.app.alerts.channels.base import (
    MulticastMessage,
    PushTransport,
    build_multicast_message,
)
from sosalert.app.alerts.channels.fcm_push import FcmPushTransport
from sosalert.app.alerts.channels.simulated_push import SimulatedPushTransport
from sosalert.app.alerts.models import AlertTarget, DispatchResult, generate_alert_id
from sosalert.app.alerts.payload_builder import build_envelope
from sosalert.app.alerts.record_store import RecordStore, build_record_store
from sosalert.app.alerts.resolvers import AddressResolver, ResponderResolver
from sosalert.app.core.config import settings
from sosalert.app.core.errors import (
    AlertAPIError,
    FailedPreconditionError,
    InternalError,
    InvalidArgumentError,
)
from sosalert.app.core.logging_config import abbreviate_token, log_context

logger = logging.getLogger(__name__)

MAX_TARGET_ID_LENGTH = 128


def _now() -> datetime:
    return datetime.now(timezone.utc)


def validate_target_id(target_id: Any) -> str:
    """
    Normalise a target id or raise InvalidArgumentError.

    Ids are non-empty strings without path separators, at most
    MAX_TARGET_ID_LENGTH characters.
    """
    if not isinstance(target_id, str) or not target_id.strip():
        raise InvalidArgumentError(
            "targetId is required and must be a string", field="targetId",
        )
    target_id = target_id.strip()
    if "/" in target_id or len(target_id) > MAX_TARGET_ID_LENGTH:
        raise InvalidArgumentError("targetId is malformed", field="targetId")
    return target_id


class Dispatcher:
    """
    Resolves who must be notified and fans one push message out to them.

    Usage:
        dispatcher = Dispatcher(InMemoryRecordStore(docs), SimulatedPushTransport())
        result = await dispatcher.trigger("student-1", "staff-9")
    """

    def __init__(
        self,
        store: RecordStore,
        transport: PushTransport,
        *,
        id_factory: Callable[[], str] = generate_alert_id,
        clock: Callable[[], datetime] = _now,
    ):
        self.store = store
        self.transport = transport
        self.responders = ResponderResolver(store)
        self.addresses = AddressResolver(store)
        self._id_factory = id_factory
        self._clock = clock

    async def _resolve_addresses(
        self, responder_ids: Tuple[str, ...],
    ) -> Tuple[List[str], List[str]]:
        """
        Resolve all tokens concurrently.

        Returns (tokens, unreachable responder ids), both in responder order.
        """
        results = await asyncio.gather(
            *(self.addresses.resolve(rid) for rid in responder_ids),
            return_exceptions=True,
        )

        tokens: List[str] = []
        unreachable: List[str] = []
        for rid, token in zip(responder_ids, results):
            if isinstance(token, BaseException):
                logger.warning(
                    "Address lookup for responder %s crashed: %s", rid, token,
                    extra={"responder_id": rid},
                )
                token = None
            if token is None:
                unreachable.append(rid)
            elif token not in tokens:
                tokens.append(token)
        return tokens, unreachable

    async def trigger(self, target_id: Any, actor_id: Optional[str] = None) -> DispatchResult:
        """
        Dispatch a critical alert for one target.

        Raises
        ------
        InvalidArgumentError
            Empty or malformed target id.
        NotFoundError
            Target record does not exist.
        FailedPreconditionError
            No responders assigned, or none with a usable token.
        InternalError
            Any unexpected failure during resolution or send.
        """
        target_id = validate_target_id(target_id)
        actor_id = actor_id or settings.DEFAULT_ACTOR_ID
        alert_id = self._id_factory()

        with log_context(alert_id=alert_id, target_id=target_id, actor_id=actor_id):
            logger.info("Trigger alert requested by %s for %s", actor_id, target_id)
            started = time.perf_counter()
            try:
                target, tokens, unreachable = await self._resolve(target_id)
                envelope = build_envelope(target, actor_id, alert_id, self._clock())
                message: MulticastMessage = build_multicast_message(envelope, tokens)
                logger.info(
                    "Sending alerts to %d devices via %s",
                    len(message.tokens), self.transport.name,
                )
                outcomes = await self.transport.send_multicast(message)
            except AlertAPIError:
                raise
            except Exception:
                logger.exception("Error in trigger for %s", target_id)
                raise InternalError()

            result = DispatchResult.from_outcomes(alert_id, outcomes, unreachable)
            for token, reason in result.failures.items():
                logger.error("Failed to send to token %s: %s", abbreviate_token(token), reason)

            logger.info(
                "Alert %s: sent %d, failed %d, unreachable %d (%.1fms)",
                alert_id, result.sent_count, result.failed_count,
                len(result.unreachable_responders),
                (time.perf_counter() - started) * 1000,
                extra={"sent_count": result.sent_count, "failed_count": result.failed_count},
            )
            return result

    async def _resolve(self, target_id: str) -> Tuple[AlertTarget, List[str], List[str]]:
        """Target snapshot, usable tokens and unreachable responders, or a precondition error."""
        target = await self.responders.resolve_target(target_id)
        if target.responders.is_empty:
            raise FailedPreconditionError(
                "Target user has no assigned responders",
                target_id=target_id,
            )
        logger.info("Found %d assigned responders for user %s", len(target.responders), target_id)

        tokens, unreachable = await self._resolve_addresses(target.responders.responder_ids)
        if not tokens:
            raise FailedPreconditionError(
                "No valid FCM tokens found for assigned responders",
                target_id=target_id,
                responders=len(target.responders),
            )
        return target, tokens, unreachable

    async def close(self) -> None:
        await self.transport.close()


# ═══════════════════════════════════════════════════════════════════════════
# Default wiring from settings
# ═══════════════════════════════════════════════════════════════════════════

def build_transport() -> PushTransport:
    """Push transport selected by settings.PUSH_PROVIDER."""
    provider = settings.PUSH_PROVIDER.lower()
    if provider == "fcm":
        return FcmPushTransport()
    if provider == "simulation":
        return SimulatedPushTransport()
    raise ValueError(f"Unknown PUSH_PROVIDER: {settings.PUSH_PROVIDER!r}")


def build_dispatcher() -> Dispatcher:
    return Dispatcher(build_record_store(), build_transport())
