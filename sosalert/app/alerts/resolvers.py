"""
resolvers.py - Resolution phase of the dispatch pipeline.

    ResponderResolver : targetId    → AlertTarget (with its ResponderSet) | NotFound
    AddressResolver   : responderId → delivery token | None

The two resolvers fail differently on purpose. A missing target ends the
dispatch. A bad responder record only costs that one responder: every
lookup error degrades to None plus a logged diagnostic.
"""

from __future__ import annotations

import logging
from typing import Optional

from sosalert.app.alerts.models import TOKEN_FIELD, AlertTarget, ResponderSet
from sosalert.app.alerts.record_store import RecordStore
from sosalert.app.core.errors import NotFoundError

logger = logging.getLogger(__name__)


class ResponderResolver:
    """Loads the target record and its assigned responders."""

    def __init__(self, store: RecordStore):
        self._store = store

    async def resolve_target(self, target_id: str) -> AlertTarget:
        """
        Snapshot the target record.

        Raises
        ------
        NotFoundError
            If the record does not exist or is empty.
        """
        document = await self._store.get_user(target_id)
        if not document:
            raise NotFoundError("Target user", target_id=target_id)
        return AlertTarget.from_record(target_id, document)

    async def resolve(self, target_id: str) -> ResponderSet:
        """Responders assigned to a target; empty when none are assigned."""
        target = await self.resolve_target(target_id)
        return target.responders


class AddressResolver:
    """Looks up the current delivery token for a responder. Never raises."""

    def __init__(self, store: RecordStore):
        self._store = store

    async def resolve(self, responder_id: str) -> Optional[str]:
        try:
            document = await self._store.get_user(responder_id)
        except Exception as exc:
            logger.warning(
                "Error fetching responder %s: %s", responder_id, exc,
                extra={"responder_id": responder_id},
            )
            return None

        if not document:
            logger.warning(
                "Responder %s has no user record", responder_id,
                extra={"responder_id": responder_id},
            )
            return None

        token = document.get(TOKEN_FIELD)
        if not isinstance(token, str) or not token.strip():
            logger.warning(
                "Responder %s has no registered device token", responder_id,
                extra={"responder_id": responder_id},
            )
            return None

        return token.strip()
