"""
record_store.py - Read-only access to the per-user record store.

The dispatcher only ever needs "give me the document for this user id".
Two backends implement that contract:

    InMemoryRecordStore - dict-backed; seedable from a JSON file (dev/tests)
    SqlRecordStore      - `users` table via SQLAlchemy async sessions

A missing user is reported as None, never as an exception. Backend
errors (connection refused, timeout) propagate to the caller, which
decides whether they are fatal.
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from sosalert.app.core.config import settings
from sosalert.app.core.database import UserRecord, get_session_factory

logger = logging.getLogger(__name__)


class RecordStore(Protocol):
    """Lookup of user documents by identifier."""

    async def get_user(self, user_id: str) -> Optional[Mapping[str, Any]]:
        ...

    async def ping(self) -> bool:
        ...


class InMemoryRecordStore:
    """Dict-backed record store."""

    def __init__(self, documents: Optional[Mapping[str, Mapping[str, Any]]] = None):
        self._documents: Dict[str, Dict[str, Any]] = {
            uid: dict(doc) for uid, doc in (documents or {}).items()
        }

    @classmethod
    def from_json_file(cls, path: str) -> "InMemoryRecordStore":
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError(f"Seed file {path} must contain a JSON object")
        logger.info("Seeded in-memory record store with %d users from %s", len(data), path)
        return cls(data)

    def put_user(self, user_id: str, document: Mapping[str, Any]) -> None:
        self._documents[user_id] = dict(document)

    async def get_user(self, user_id: str) -> Optional[Mapping[str, Any]]:
        doc = self._documents.get(user_id)
        return dict(doc) if doc is not None else None

    async def ping(self) -> bool:
        return True

    def __len__(self) -> int:
        return len(self._documents)


class SqlRecordStore:
    """Record store backed by the `users` table."""

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        *,
        timeout_seconds: Optional[float] = None,
    ):
        self._session_factory = session_factory or get_session_factory()
        self._timeout = (
            timeout_seconds if timeout_seconds is not None
            else settings.RECORD_STORE_TIMEOUT_SECONDS
        )

    async def _fetch(self, user_id: str) -> Optional[Mapping[str, Any]]:
        async with self._session_factory() as session:
            record = await session.get(UserRecord, user_id)
            if record is None:
                return None
            return dict(record.document or {})

    async def get_user(self, user_id: str) -> Optional[Mapping[str, Any]]:
        return await asyncio.wait_for(self._fetch(user_id), timeout=self._timeout)

    async def put_user(self, user_id: str, document: Mapping[str, Any]) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                await session.merge(UserRecord(id=user_id, document=dict(document)))

    async def ping(self) -> bool:
        async with self._session_factory() as session:
            await session.execute(select(UserRecord.id).limit(1))
        return True


def build_record_store() -> RecordStore:
    """Record store selected by settings.RECORD_STORE."""
    backend = settings.RECORD_STORE.lower()
    if backend == "database":
        return SqlRecordStore()
    if backend == "memory":
        if settings.RECORD_STORE_SEED_PATH:
            return InMemoryRecordStore.from_json_file(settings.RECORD_STORE_SEED_PATH)
        return InMemoryRecordStore()
    raise ValueError(f"Unknown RECORD_STORE backend: {settings.RECORD_STORE!r}")
