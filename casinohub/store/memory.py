"""In-memory data store with a live change feed.

Per-process, suitable for local development and tests. Implements the same
query semantics as the hosted store (equality/IN/ILIKE filters, substring
search, nulls-last ordering, inclusive range windows) and pushes
insert/update/delete payloads to every subscriber of a collection.

Fault injection helpers (``fail_next``, ``fail_subscribes``,
``drop_subscriptions``) let tests drive the transport error paths without
mocking infrastructure.
"""

from __future__ import annotations

import copy
import logging
import re
import uuid
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Sequence

from casinohub.errors import (
    ConstraintViolationError,
    DataStoreError,
    QueryValidationError,
    RecordNotFoundError,
    TransportError,
)
from casinohub.store.base import (
    Actor,
    ChangeCallback,
    DataStore,
    ErrorCallback,
    StoreSubscription,
)
from casinohub.store.query import QueryResult, QuerySpec, Record, active_filters

logger = logging.getLogger(__name__)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _like_to_regex(pattern: str) -> re.Pattern[str]:
    """Translate an SQL LIKE pattern (``%``/``_``) into a case-insensitive regex."""
    parts: list[str] = []
    for char in pattern:
        if char == "%":
            parts.append(".*")
        elif char == "_":
            parts.append(".")
        else:
            parts.append(re.escape(char))
    return re.compile("".join(parts), re.IGNORECASE | re.DOTALL)


class InMemoryDataStore(DataStore):
    """Dict-backed tables keyed by collection name, then record id."""

    def __init__(self, actor: Actor | None = None) -> None:
        self._tables: dict[str, dict[str, Record]] = defaultdict(dict)
        self._subscriptions: dict[str, list[StoreSubscription]] = defaultdict(list)
        self._actor = actor
        self._failures: dict[str, list[DataStoreError]] = defaultdict(list)
        self._subscribe_failures: list[DataStoreError] = []
        # Every select issued, for assertions on page windows.
        self.queries: list[tuple[str, QuerySpec]] = []

    # -- Fault injection ----------------------------------------------------

    def fail_next(self, operation: str, error: DataStoreError, times: int = 1) -> None:
        """Make the next ``times`` calls of ``operation`` raise ``error``."""
        self._failures[operation].extend([error] * times)

    def fail_subscribes(self, times: int, message: str = "channel error") -> None:
        """Make the next ``times`` ``on_change`` calls fail with a transport error."""
        self._subscribe_failures.extend([TransportError(message)] * times)

    def drop_subscriptions(self, collection: str, message: str = "connection lost") -> int:
        """Kill every live subscription on ``collection`` as a network drop would.

        Returns:
            Number of subscriptions dropped.
        """
        dropped = list(self._subscriptions.pop(collection, []))
        for sub in dropped:
            sub.active = False
            if sub.on_error is not None:
                sub.on_error(TransportError(message))
        if dropped:
            logger.debug("Dropped %d subscriptions on %s", len(dropped), collection)
        return len(dropped)

    def report_errors(self, collection: str, message: str = "channel error") -> int:
        """Call every ``on_error`` on ``collection`` but keep the registrations.

        Feeds that report a channel error without tearing the subscription
        down leave the cleanup to the subscriber.
        """
        live = list(self._subscriptions.get(collection, []))
        for sub in live:
            if sub.on_error is not None:
                sub.on_error(TransportError(message))
        return len(live)

    def _maybe_fail(self, operation: str) -> None:
        queued = self._failures.get(operation)
        if queued:
            raise queued.pop(0)

    # -- Seeding / inspection ----------------------------------------------

    def seed(self, collection: str, records: Sequence[Record]) -> None:
        """Load records without emitting change events."""
        table = self._tables[collection]
        for record in records:
            if "id" not in record:
                raise QueryValidationError("Seed records must carry an 'id'")
            table[str(record["id"])] = copy.deepcopy(dict(record))

    def rows(self, collection: str) -> list[Record]:
        return [copy.deepcopy(r) for r in self._tables[collection].values()]

    def subscriber_count(self, collection: str) -> int:
        return len(self._subscriptions.get(collection, []))

    def set_actor(self, actor: Actor | None) -> None:
        self._actor = actor

    # -- Queries ------------------------------------------------------------

    async def select(self, collection: str, query: QuerySpec) -> QueryResult:
        self._maybe_fail("select")
        self.queries.append((collection, query))

        rows = list(self._tables[collection].values())
        for column, op, operand in active_filters(query.filters):
            rows = [r for r in rows if self._matches(r, column, op, operand)]

        if query.search_term and query.search_fields:
            needle = query.search_term.lower()
            rows = [
                r
                for r in rows
                if any(needle in str(r.get(f) or "").lower() for f in query.search_fields)
            ]

        if query.sort_column:
            rows = self._sorted(rows, query.sort_column, query.ascending)

        total = len(rows)
        if query.range_start is not None and query.range_end is not None:
            rows = rows[query.range_start : query.range_end + 1]

        return QueryResult(
            records=[self._project(r, query.columns) for r in rows],
            total_count=total,
        )

    @staticmethod
    def _matches(record: Record, column: str, op: str, operand: Any) -> bool:
        value = record.get(column)
        if op == "eq":
            return value == operand
        if op == "in":
            return value in operand
        if op == "ilike":
            return value is not None and bool(_like_to_regex(operand).fullmatch(str(value)))
        raise QueryValidationError(f"Unknown filter operator: {op}")

    @staticmethod
    def _sorted(rows: list[Record], column: str, ascending: bool) -> list[Record]:
        present = [r for r in rows if r.get(column) is not None]
        missing = [r for r in rows if r.get(column) is None]
        try:
            present.sort(key=lambda r: r[column], reverse=not ascending)
        except TypeError as exc:
            raise QueryValidationError(f"Cannot sort by '{column}': {exc}") from exc
        # Postgres default: NULLS LAST for ASC, NULLS FIRST for DESC.
        return present + missing if ascending else missing + present

    @staticmethod
    def _project(record: Record, columns: str) -> Record:
        if columns.strip() in ("", "*"):
            return copy.deepcopy(record)
        wanted = [c.strip() for c in columns.split(",") if c.strip()]
        return {c: copy.deepcopy(record.get(c)) for c in wanted}

    # -- Mutations ----------------------------------------------------------

    async def insert(self, collection: str, record: Record) -> Record:
        self._maybe_fail("insert")
        row = copy.deepcopy(dict(record))
        row_id = str(row.get("id") or uuid.uuid4())
        table = self._tables[collection]
        if row_id in table:
            raise ConstraintViolationError(
                f"duplicate key value violates unique constraint on {collection}.id: {row_id}"
            )
        now = _now_iso()
        row["id"] = row_id
        row.setdefault("created_at", now)
        row.setdefault("updated_at", now)
        table[row_id] = row
        self._emit(collection, "INSERT", new=row)
        return copy.deepcopy(row)

    async def update(self, collection: str, record_id: str, patch: Record) -> Record:
        self._maybe_fail("update")
        table = self._tables[collection]
        existing = table.get(record_id)
        if existing is None:
            raise RecordNotFoundError(f"{collection} record not found: {record_id}")
        if "id" in patch and str(patch["id"]) != record_id:
            raise QueryValidationError("Record id cannot be changed by an update")
        old = copy.deepcopy(existing)
        existing.update(copy.deepcopy(dict(patch)))
        existing["updated_at"] = _now_iso()
        self._emit(collection, "UPDATE", new=existing, old=old)
        return copy.deepcopy(existing)

    async def delete(self, collection: str, record_ids: Sequence[str]) -> None:
        self._maybe_fail("delete")
        table = self._tables[collection]
        removed = [table.pop(rid) for rid in list(record_ids) if rid in table]
        for old in removed:
            self._emit(collection, "DELETE", old=old)

    async def current_actor(self) -> Actor | None:
        self._maybe_fail("current_actor")
        return self._actor

    # -- Change feed --------------------------------------------------------

    async def on_change(
        self,
        collection: str,
        callback: ChangeCallback,
        on_error: ErrorCallback | None = None,
    ) -> StoreSubscription:
        if self._subscribe_failures:
            raise self._subscribe_failures.pop(0)
        sub = StoreSubscription(collection=collection, callback=callback, on_error=on_error)
        self._subscriptions[collection].append(sub)
        return sub

    async def unsubscribe(self, subscription: StoreSubscription) -> None:
        subscription.active = False
        subs = self._subscriptions.get(subscription.collection, [])
        if subscription in subs:
            subs.remove(subscription)

    def emit(
        self,
        collection: str,
        event_type: str,
        *,
        new: Record | None = None,
        old: Record | None = None,
    ) -> None:
        """Push a change payload as if another client had mutated the table."""
        self._emit(collection, event_type, new=new, old=old)

    def _emit(
        self,
        collection: str,
        event_type: str,
        *,
        new: Record | None = None,
        old: Record | None = None,
    ) -> None:
        payload = {
            "eventType": event_type,
            "table": collection,
            "new": copy.deepcopy(new) if new is not None else {},
            "old": copy.deepcopy(old) if old is not None else {},
        }
        for sub in list(self._subscriptions.get(collection, [])):
            if sub.active:
                sub.callback(payload)
