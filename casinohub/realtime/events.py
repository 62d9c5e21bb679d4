"""Change events produced by the subscription manager.

A ``ChangeEvent`` is immutable and consumed once by a reconciler. Raw
backend payloads (``{"eventType": "INSERT", "new": {...}, "old": {...}}``)
are normalised here so nothing downstream touches the wire shape.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping

from casinohub.store.query import Record


class ChangeKind(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class MalformedEventError(ValueError):
    """A change payload without a usable event type or record id."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ChangeEvent:
    """One insert/update/delete notification for a collection.

    ``record`` is set for INSERT and UPDATE; ``record_id`` is always set.
    """

    kind: ChangeKind
    record_id: str
    record: Record | None = None
    received_at: datetime = field(default_factory=_utcnow)

    def __post_init__(self) -> None:
        if not self.record_id:
            raise MalformedEventError("ChangeEvent requires a record id")
        if self.kind is not ChangeKind.DELETE and self.record is None:
            raise MalformedEventError(f"{self.kind.value} event requires a record")

    @classmethod
    def insert(cls, record: Record) -> "ChangeEvent":
        return cls(ChangeKind.INSERT, str(record.get("id") or ""), dict(record))

    @classmethod
    def update(cls, record: Record) -> "ChangeEvent":
        return cls(ChangeKind.UPDATE, str(record.get("id") or ""), dict(record))

    @classmethod
    def delete(cls, record_id: str) -> "ChangeEvent":
        return cls(ChangeKind.DELETE, str(record_id))

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "ChangeEvent":
        """Build an event from a raw change-feed payload.

        Raises:
            MalformedEventError: Unknown event type or missing id.
        """
        raw_type = str(payload.get("eventType") or payload.get("type") or "").upper()
        try:
            kind = ChangeKind(raw_type)
        except ValueError as exc:
            raise MalformedEventError(f"Unknown change event type: {raw_type!r}") from exc

        new = payload.get("new") or None
        old = payload.get("old") or None
        if kind is ChangeKind.DELETE:
            record_id = (old or {}).get("id")
            if record_id is None:
                raise MalformedEventError("DELETE payload without old.id")
            return cls.delete(str(record_id))

        if not new or new.get("id") is None:
            raise MalformedEventError(f"{kind.value} payload without new.id")
        return cls(kind, str(new["id"]), dict(new))
