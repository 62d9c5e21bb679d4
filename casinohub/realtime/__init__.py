"""Realtime change feeds: subscription management and batched reconciliation.

Public API:

    from casinohub.realtime import (
        BatchReconciler,
        ChangeEvent,
        ChangeKind,
        ConnectionStatus,
        SubscriptionHandle,
        SubscriptionManager,
        SubscriptionState,
        apply_changes,
        backoff_delay,
    )
"""

from casinohub.realtime.events import ChangeEvent, ChangeKind, MalformedEventError
from casinohub.realtime.metrics import ConnectionMetrics, ConnectionQuality, compute_metrics
from casinohub.realtime.reconciler import BatchReconciler, apply_changes
from casinohub.realtime.subscription import (
    ConnectionStatus,
    SubscriptionHandle,
    SubscriptionManager,
    SubscriptionState,
    backoff_delay,
)

__all__ = [
    "BatchReconciler",
    "ChangeEvent",
    "ChangeKind",
    "ConnectionMetrics",
    "ConnectionQuality",
    "ConnectionStatus",
    "MalformedEventError",
    "SubscriptionHandle",
    "SubscriptionManager",
    "SubscriptionState",
    "apply_changes",
    "backoff_delay",
    "compute_metrics",
]
