"""Connection-quality telemetry for realtime subscriptions.

Derived on demand from a ``SubscriptionState`` snapshot: nothing here is
stored, so reading metrics never mutates subscription state.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from casinohub.realtime.subscription import SubscriptionState

# Last-update age thresholds (seconds) for quality buckets.
_GOOD_AFTER = 5.0
_FAIR_AFTER = 10.0
_POOR_AFTER = 30.0


class ConnectionQuality(str, Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"


@dataclass(frozen=True)
class ConnectionMetrics:
    status: str
    uptime_seconds: float
    messages_received: int
    last_update_age_seconds: float | None
    quality: ConnectionQuality
    reconnect_attempts: int


def classify_quality(connected: bool, last_update_age: float | None) -> ConnectionQuality:
    """Bucket a connection by how stale its last change event is.

    A connection that has not received any event yet is judged on
    connectivity alone.
    """
    if not connected:
        return ConnectionQuality.POOR
    if last_update_age is None:
        return ConnectionQuality.EXCELLENT
    if last_update_age > _POOR_AFTER:
        return ConnectionQuality.POOR
    if last_update_age > _FAIR_AFTER:
        return ConnectionQuality.FAIR
    if last_update_age > _GOOD_AFTER:
        return ConnectionQuality.GOOD
    return ConnectionQuality.EXCELLENT


def compute_metrics(state: "SubscriptionState", now: datetime | None = None) -> ConnectionMetrics:
    """Build a metrics snapshot for ``state`` as of ``now`` (UTC)."""
    from casinohub.realtime.subscription import ConnectionStatus

    now = now or datetime.now(timezone.utc)
    connected = state.connection_status is ConnectionStatus.CONNECTED

    uptime = 0.0
    if connected and state.connected_since is not None:
        uptime = max(0.0, (now - state.connected_since).total_seconds())

    age: float | None = None
    if state.last_event_at is not None:
        age = max(0.0, (now - state.last_event_at).total_seconds())

    return ConnectionMetrics(
        status=state.connection_status.value,
        uptime_seconds=uptime,
        messages_received=state.total_events_received,
        last_update_age_seconds=age,
        quality=classify_quality(connected, age),
        reconnect_attempts=state.reconnect_attempts,
    )
