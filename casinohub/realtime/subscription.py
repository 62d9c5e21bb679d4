"""Change subscription manager with exponential-backoff reconnection.

Maintains one backend subscription per collection name and fans its change
events out to every listener that opened a handle on that collection.

States: disconnected -> connecting -> connected | errored.
connected -> errored | disconnected; errored -> connecting (retry) | disconnected.

Failures are retried after ``min(base * 2**attempts, max)`` and given up
after ``max_reconnect_attempts``, leaving a terminal error that only an
explicit ``reconnect()`` clears. Everything runs on one asyncio loop: timers
use ``loop.call_later`` and connection attempts run as tasks.
"""

from __future__ import annotations

import asyncio
import dataclasses
import itertools
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable

from casinohub.errors import DataStoreError, ErrorCode, RetryExhaustedError
from casinohub.realtime.events import ChangeEvent, MalformedEventError
from casinohub.realtime.metrics import ConnectionMetrics, compute_metrics
from casinohub.store.base import ChangeFeed, ChangePayload, StoreSubscription

logger = logging.getLogger(__name__)

EventListener = Callable[[ChangeEvent], None]


class ConnectionStatus(str, Enum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERRORED = "errored"
    DISCONNECTED = "disconnected"


_ALLOWED_TRANSITIONS: dict[ConnectionStatus, frozenset[ConnectionStatus]] = {
    ConnectionStatus.DISCONNECTED: frozenset({ConnectionStatus.CONNECTING}),
    ConnectionStatus.CONNECTING: frozenset({ConnectionStatus.CONNECTED, ConnectionStatus.ERRORED}),
    ConnectionStatus.CONNECTED: frozenset({ConnectionStatus.ERRORED, ConnectionStatus.DISCONNECTED}),
    ConnectionStatus.ERRORED: frozenset({ConnectionStatus.CONNECTING, ConnectionStatus.DISCONNECTED}),
}


@dataclass
class SubscriptionState:
    connection_status: ConnectionStatus = ConnectionStatus.DISCONNECTED
    reconnect_attempts: int = 0
    last_error: str | None = None
    last_error_code: str | None = None
    last_event_at: datetime | None = None
    total_events_received: int = 0
    connected_since: datetime | None = None
    exhausted: bool = False


def backoff_delay(attempts: int, base_ms: int = 1000, max_ms: int = 30000) -> float:
    """Seconds to wait before retry number ``attempts + 1``."""
    return min(base_ms * (2 ** attempts), max_ms) / 1000.0


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _error_code(exc: Exception) -> str:
    if isinstance(exc, DataStoreError):
        return exc.code.value
    return ErrorCode.TRANSPORT.value


class _Channel:
    """One backend subscription for a collection plus its listeners.

    ``_generation`` increments whenever the live subscription is torn down,
    so late callbacks from a superseded backend subscription are ignored.
    """

    def __init__(self, manager: "SubscriptionManager", collection: str) -> None:
        self._manager = manager
        self.collection = collection
        self.state = SubscriptionState()
        self.listeners: dict[int, EventListener] = {}
        self._store_sub: StoreSubscription | None = None
        self._connect_task: asyncio.Task[None] | None = None
        self._retry_timer: asyncio.TimerHandle | None = None
        self._releases: set[asyncio.Task[None]] = set()
        self._generation = 0

    # -- State ---------------------------------------------------------------

    def _transition(self, new: ConnectionStatus) -> None:
        current = self.state.connection_status
        if new not in _ALLOWED_TRANSITIONS[current]:
            raise RuntimeError(
                f"Illegal subscription transition {current.value} -> {new.value} "
                f"for {self.collection}"
            )
        self.state.connection_status = new
        logger.info("Realtime %s: %s -> %s", self.collection, current.value, new.value)

    @property
    def is_live(self) -> bool:
        return self._store_sub is not None or (
            self._connect_task is not None and not self._connect_task.done()
        )

    # -- Connecting ----------------------------------------------------------

    def start(self) -> asyncio.Task[None]:
        self._connect_task = asyncio.get_running_loop().create_task(self._connect())
        return self._connect_task

    async def _connect(self) -> None:
        generation = self._generation
        self._transition(ConnectionStatus.CONNECTING)
        try:
            sub = await self._manager.store.on_change(
                self.collection,
                lambda payload: self._dispatch(generation, payload),
                lambda exc: self._handle_drop(generation, exc),
            )
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning(
                "Realtime %s subscribe failed: %s", self.collection, exc, exc_info=True
            )
            if generation == self._generation:
                self._on_failure(exc)
            return

        if generation != self._generation:
            # Closed or paused while the ack was in flight.
            await self._manager.store.unsubscribe(sub)
            return

        self._store_sub = sub
        self._transition(ConnectionStatus.CONNECTED)
        self.state.reconnect_attempts = 0
        self.state.last_error = None
        self.state.last_error_code = None
        self.state.exhausted = False
        self.state.connected_since = _utcnow()

    def _on_failure(self, exc: Exception) -> None:
        self._store_sub = None
        self.state.last_error = str(exc) or type(exc).__name__
        self.state.last_error_code = _error_code(exc)
        self.state.connected_since = None
        self._transition(ConnectionStatus.ERRORED)
        self._schedule_retry()

    def _schedule_retry(self) -> None:
        manager = self._manager
        if self.state.reconnect_attempts >= manager.max_reconnect_attempts:
            exhausted = RetryExhaustedError(
                f"Realtime connection failed after {manager.max_reconnect_attempts} attempts"
            )
            self.state.exhausted = True
            self.state.last_error = str(exhausted)
            self.state.last_error_code = exhausted.code.value
            logger.warning(
                "Realtime %s gave up after %d attempts; call reconnect() to resume",
                self.collection,
                manager.max_reconnect_attempts,
            )
            return

        delay = backoff_delay(
            self.state.reconnect_attempts, manager.base_delay_ms, manager.max_delay_ms
        )
        self.state.reconnect_attempts += 1
        logger.info(
            "Realtime %s reconnecting in %.2fs (attempt %d/%d)",
            self.collection,
            delay,
            self.state.reconnect_attempts,
            manager.max_reconnect_attempts,
        )
        self._retry_timer = asyncio.get_running_loop().call_later(delay, self._retry)

    def _retry(self) -> None:
        self._retry_timer = None
        self.start()

    @property
    def retry_pending(self) -> bool:
        return self._retry_timer is not None

    # -- Backend callbacks ---------------------------------------------------

    def _dispatch(self, generation: int, payload: ChangePayload) -> None:
        if generation != self._generation:
            return
        try:
            event = ChangeEvent.from_payload(payload)
        except MalformedEventError:
            logger.warning("Realtime %s ignored malformed payload", self.collection, exc_info=True)
            return

        self.state.last_event_at = event.received_at
        self.state.total_events_received += 1
        logger.debug(
            "Realtime %s %s id=%s", self.collection, event.kind.value, event.record_id
        )
        for listener in list(self.listeners.values()):
            try:
                listener(event)
            except Exception:
                logger.exception("Realtime %s listener failed", self.collection)

    def _handle_drop(self, generation: int, exc: Exception) -> None:
        if generation != self._generation:
            return
        if self.state.connection_status is not ConnectionStatus.CONNECTED:
            return
        logger.warning("Realtime %s connection dropped: %s", self.collection, exc)
        self._generation += 1
        dropped = self._store_sub
        if dropped is not None:
            self._release(dropped)
        self._on_failure(exc)

    def _release(self, sub: StoreSubscription) -> None:
        """Unsubscribe ``sub`` from a sync callback; ``stop`` waits for it."""
        task = asyncio.get_running_loop().create_task(self._unsubscribe(sub))
        self._releases.add(task)
        task.add_done_callback(self._releases.discard)

    async def _unsubscribe(self, sub: StoreSubscription) -> None:
        try:
            await self._manager.store.unsubscribe(sub)
        except Exception:
            logger.warning(
                "Realtime %s failed to release dropped subscription", self.collection, exc_info=True
            )

    # -- Teardown ------------------------------------------------------------

    async def stop(self) -> None:
        """Cancel pending retries and release the backend subscription.

        An attempt already waiting on the backend is awaited, not cancelled.
        After the generation bump it unsubscribes whatever the backend acks.
        """
        self._generation += 1
        if self._retry_timer is not None:
            self._retry_timer.cancel()
            self._retry_timer = None
        task = self._connect_task
        self._connect_task = None
        if task is not None and not task.done():
            await asyncio.wait({task})
        sub = self._store_sub
        self._store_sub = None
        if sub is not None:
            await self._manager.store.unsubscribe(sub)
        if self._releases:
            await asyncio.wait(set(self._releases))

    def mark_disconnected(self) -> None:
        """Move to disconnected, via a transition where one is allowed."""
        status = self.state.connection_status
        if ConnectionStatus.DISCONNECTED in _ALLOWED_TRANSITIONS[status]:
            self._transition(ConnectionStatus.DISCONNECTED)
        else:
            self.state.connection_status = ConnectionStatus.DISCONNECTED
        self.state.connected_since = None


class SubscriptionHandle:
    """Caller's handle on a collection's change stream.

    The caller that opened a handle must close it (``await handle.close()``)
    when it stops needing updates; a forgotten handle keeps its backend
    subscription alive for the rest of the process.
    """

    def __init__(self, manager: "SubscriptionManager", collection: str, listener_id: int) -> None:
        self._manager = manager
        self.collection = collection
        self.listener_id = listener_id
        self.closed = False

    @property
    def state(self) -> SubscriptionState:
        """Snapshot of the channel state (initial state once closed)."""
        return self._manager.state(self.collection) if not self.closed else SubscriptionState()

    def metrics(self, now: datetime | None = None) -> ConnectionMetrics:
        return compute_metrics(self.state, now)

    async def close(self) -> None:
        await self._manager.close(self)

    async def reconnect(self) -> None:
        await self._manager.reconnect(self)


class SubscriptionManager:
    """Opens, maintains and recovers change-stream subscriptions.

    Args:
        store: Anything implementing ``ChangeFeed``.
        max_reconnect_attempts: Retries before the terminal error.
        base_delay_ms: First retry delay; doubles per attempt.
        max_delay_ms: Cap on a single retry delay.
    """

    def __init__(
        self,
        store: ChangeFeed,
        *,
        max_reconnect_attempts: int = 5,
        base_delay_ms: int = 1000,
        max_delay_ms: int = 30000,
    ) -> None:
        self.store = store
        self.max_reconnect_attempts = max_reconnect_attempts
        self.base_delay_ms = base_delay_ms
        self.max_delay_ms = max_delay_ms
        self._channels: dict[str, _Channel] = {}
        self._listener_ids = itertools.count(1)
        self._paused = False

    @classmethod
    def from_settings(cls, store: ChangeFeed, settings) -> "SubscriptionManager":
        return cls(
            store,
            max_reconnect_attempts=settings.REALTIME_MAX_RECONNECT_ATTEMPTS,
            base_delay_ms=settings.REALTIME_RECONNECT_BASE_MS,
            max_delay_ms=settings.REALTIME_RECONNECT_MAX_MS,
        )

    @property
    def paused(self) -> bool:
        return self._paused

    @property
    def collections(self) -> list[str]:
        return list(self._channels)

    def state(self, collection: str) -> SubscriptionState:
        channel = self._channels.get(collection)
        if channel is None:
            return SubscriptionState()
        return dataclasses.replace(channel.state)

    def retry_pending(self, collection: str) -> bool:
        channel = self._channels.get(collection)
        return channel is not None and channel.retry_pending

    async def open(self, collection: str, on_event: EventListener) -> SubscriptionHandle:
        """Subscribe ``on_event`` to ``collection``'s change stream.

        Returns after the first connection attempt settles, so the handle's
        state is connected or errored (retries continue in the background).

        Raises:
            ValueError: If ``collection`` is empty.
        """
        if not collection or not collection.strip():
            raise ValueError("collection name must not be empty")

        channel = self._channels.get(collection)
        if channel is None:
            channel = _Channel(self, collection)
            self._channels[collection] = channel

        listener_id = next(self._listener_ids)
        channel.listeners[listener_id] = on_event
        handle = SubscriptionHandle(self, collection, listener_id)

        idle = not channel.is_live and not channel.retry_pending
        if idle and not self._paused and not channel.state.exhausted:
            await asyncio.wait({channel.start()})
        return handle

    async def close(self, handle: SubscriptionHandle) -> None:
        """Release ``handle``. Closing an already-closed handle is a no-op."""
        if handle.closed:
            return
        handle.closed = True
        channel = self._channels.get(handle.collection)
        if channel is None:
            return
        channel.listeners.pop(handle.listener_id, None)
        if channel.listeners:
            return
        await channel.stop()
        del self._channels[handle.collection]
        logger.info("Realtime %s closed", handle.collection)

    async def reconnect(self, handle: SubscriptionHandle) -> None:
        """Manually re-open ``handle``'s channel with a fresh retry budget."""
        if handle.closed:
            raise RuntimeError("Cannot reconnect a closed subscription handle")
        channel = self._channels[handle.collection]
        await channel.stop()
        channel.mark_disconnected()
        channel.state.reconnect_attempts = 0
        channel.state.last_error = None
        channel.state.last_error_code = None
        channel.state.exhausted = False
        if not self._paused:
            await asyncio.wait({channel.start()})

    async def pause(self) -> None:
        """Suspend every channel (host went to background). Listeners are kept."""
        self._paused = True
        for channel in self._channels.values():
            await channel.stop()
            channel.mark_disconnected()
        logger.info("Realtime paused (%d channels)", len(self._channels))

    async def resume(self) -> None:
        """Re-open every channel that has listeners and no live subscription."""
        self._paused = False
        pending: set[asyncio.Task[None]] = set()
        for channel in self._channels.values():
            if channel.listeners and not channel.is_live:
                await channel.stop()
                channel.mark_disconnected()
                channel.state.reconnect_attempts = 0
                channel.state.exhausted = False
                pending.add(channel.start())
        if pending:
            await asyncio.wait(pending)
        logger.info("Realtime resumed (%d channels reopened)", len(pending))

    async def aclose(self) -> None:
        """Close every channel regardless of remaining listeners."""
        for collection, channel in list(self._channels.items()):
            await channel.stop()
            del self._channels[collection]
