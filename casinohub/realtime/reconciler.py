"""Batching/debounce reconciler for change events.

Coalesces a burst of insert/update events into one state update. A flush
happens when the pending queue reaches ``batch_size`` (synchronously, inside
``enqueue``) or when ``debounce_ms`` passes with no further events
(trailing edge: every enqueue restarts the wait). Deletes never wait.

The queue is keyed by record id, so a later event for the same record
replaces the earlier one (last write wins within a batch).
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Iterable, Sequence

from casinohub.realtime.events import ChangeEvent, ChangeKind
from casinohub.store.query import Record

logger = logging.getLogger(__name__)

FlushCallback = Callable[[list[ChangeEvent]], None]
DeleteCallback = Callable[[str], None]


def apply_changes(items: Sequence[Record], events: Iterable[ChangeEvent]) -> list[Record]:
    """Apply queued events to a list of records, in order.

    INSERT puts the record at the front, newest first (or replaces it when
    the id is already present); UPDATE replaces a present record and is a
    no-op for ids that are not in ``items``; DELETE removes the id. Ids stay
    unique.
    """
    result = list(items)
    index = {str(r.get("id")): i for i, r in enumerate(result)}

    for event in events:
        position = index.get(event.record_id)
        if event.kind is ChangeKind.DELETE:
            if position is not None:
                del result[position]
                index = {str(r.get("id")): i for i, r in enumerate(result)}
            continue
        if position is not None:
            result[position] = dict(event.record or {})
        elif event.kind is ChangeKind.INSERT:
            result.insert(0, dict(event.record or {}))
            index = {str(r.get("id")): i for i, r in enumerate(result)}
    return result


class BatchReconciler:
    """Queue change events and flush them into a target in batches.

    Args:
        on_flush: Receives the queued events, in enqueue order, on every flush.
        on_delete: Receives a record id as soon as a DELETE arrives.
        batch_size: Queue length that triggers an immediate flush.
        debounce_ms: Quiet period after the last enqueue before flushing.
    """

    def __init__(
        self,
        on_flush: FlushCallback,
        on_delete: DeleteCallback,
        *,
        batch_size: int = 10,
        debounce_ms: int = 300,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        if debounce_ms < 0:
            raise ValueError("debounce_ms must be >= 0")
        self._on_flush = on_flush
        self._on_delete = on_delete
        self.batch_size = batch_size
        self.debounce_ms = debounce_ms
        self._queue: dict[str, ChangeEvent] = {}
        self._timer: asyncio.TimerHandle | None = None
        self._closed = False
        self.flush_count = 0

    @classmethod
    def from_settings(
        cls, on_flush: FlushCallback, on_delete: DeleteCallback, settings
    ) -> "BatchReconciler":
        return cls(
            on_flush,
            on_delete,
            batch_size=settings.REALTIME_BATCH_SIZE,
            debounce_ms=settings.REALTIME_DEBOUNCE_MS,
        )

    @property
    def pending(self) -> list[ChangeEvent]:
        return list(self._queue.values())

    @property
    def timer_pending(self) -> bool:
        return self._timer is not None

    def __len__(self) -> int:
        return len(self._queue)

    def enqueue(self, event: ChangeEvent) -> None:
        """Queue ``event``, applying deletes immediately.

        Raises:
            RuntimeError: If the reconciler has been closed.
        """
        if self._closed:
            raise RuntimeError("Cannot enqueue on a closed reconciler")

        if event.kind is ChangeKind.DELETE:
            # A queued insert/update for a deleted record has nothing left to touch.
            self._queue.pop(event.record_id, None)
            self._on_delete(event.record_id)
            return

        previous = self._queue.get(event.record_id)
        if previous is not None and previous.kind is ChangeKind.INSERT:
            # Still new to the consumer: keep insert semantics with the newer row.
            event = ChangeEvent(
                ChangeKind.INSERT, event.record_id, event.record, event.received_at
            )
        self._queue[event.record_id] = event

        if len(self._queue) >= self.batch_size:
            self.flush()
            return
        self._restart_timer()

    def _restart_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self.debounce_ms / 1000.0, self._on_timer)

    def _on_timer(self) -> None:
        self._timer = None
        self.flush()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def flush(self) -> int:
        """Apply every queued event and clear the queue.

        Returns:
            Number of events flushed (0 when the queue was empty).
        """
        self._cancel_timer()
        if not self._queue:
            return 0
        batch = list(self._queue.values())
        self._queue.clear()
        self.flush_count += 1
        logger.debug("Flushing %d queued change events", len(batch))
        self._on_flush(batch)
        return len(batch)

    def discard(self) -> int:
        """Drop every queued event without applying it."""
        self._cancel_timer()
        dropped = len(self._queue)
        self._queue.clear()
        return dropped

    def close(self, *, flush: bool = True) -> int:
        """Stop the reconciler; flush (default) or discard what is queued."""
        if self._closed:
            return 0
        count = self.flush() if flush else self.discard()
        self._closed = True
        return count
