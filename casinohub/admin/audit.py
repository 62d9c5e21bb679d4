"""Audit trail for admin mutations.

Every successful create/update/delete is recorded as an ``AuditEntry`` in
the audit collection of the same data store. The acting identity comes
from ``DataStore.current_actor()`` and is cached with a TTL so bulk
operations do not look it up once per row.

Audit writes are a side effect: a failed write is logged and never turns a
successful mutation into a failure.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from cachetools import TTLCache

from casinohub.errors import DataStoreError
from casinohub.store.base import Actor, DataStore

logger = logging.getLogger(__name__)


class AuditAction(str, Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


@dataclass(frozen=True)
class AuditEntry:
    actor_id: str
    actor_role: str
    action: AuditAction
    collection: str
    record_id: str
    details: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_record(self) -> dict[str, Any]:
        """Row shape of the audit table."""
        return {
            "admin_id": self.actor_id,
            "admin_role": self.actor_role,
            "action": self.action.value,
            "table_name": self.collection,
            "record_id": self.record_id,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
        }


class AuditLog(ABC):
    @abstractmethod
    async def record(
        self,
        action: AuditAction,
        collection: str,
        record_id: str,
        details: dict[str, Any] | None = None,
    ) -> AuditEntry | None:
        """Record one mutation; returns the entry written, or ``None``."""


class StoreAuditLog(AuditLog):
    """Writes audit entries into a collection of the data store.

    Args:
        store: Data store used for both the actor lookup and the insert.
        collection: Audit table name.
        actor_ttl: Seconds to cache the current actor.
    """

    def __init__(
        self,
        store: DataStore,
        collection: str = "admin_activity_logs",
        actor_ttl: int = 300,
    ) -> None:
        self._store = store
        self.collection = collection
        self._actor_cache: TTLCache[str, Actor] = TTLCache(maxsize=1, ttl=actor_ttl)

    async def actor(self) -> Actor | None:
        cached = self._actor_cache.get("actor")
        if cached is not None:
            return cached
        try:
            actor = await self._store.current_actor()
        except DataStoreError:
            logger.warning("Actor lookup failed; audit entry skipped", exc_info=True)
            return None
        if actor is not None:
            self._actor_cache["actor"] = actor
        return actor

    def clear_actor_cache(self) -> None:
        """Forget the cached actor (sign-out, credential rotation)."""
        self._actor_cache.clear()

    async def record(
        self,
        action: AuditAction,
        collection: str,
        record_id: str,
        details: dict[str, Any] | None = None,
    ) -> AuditEntry | None:
        actor = await self.actor()
        if actor is None:
            logger.debug("No authenticated actor; not auditing %s %s", action.value, collection)
            return None

        entry = AuditEntry(
            actor_id=actor.id,
            actor_role=actor.role,
            action=action,
            collection=collection,
            record_id=record_id,
            details=dict(details or {}),
        )
        try:
            await self._store.insert(self.collection, entry.to_record())
        except DataStoreError:
            logger.warning(
                "Audit write failed: action=%s collection=%s record_id=%s",
                action.value,
                collection,
                record_id,
                exc_info=True,
            )
            return None
        logger.info(
            "Audited %s %s id=%s by %s", action.value, collection, record_id, actor.id
        )
        return entry
