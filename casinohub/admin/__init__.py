"""Admin content management: CRUD controller, audit trail and notifications.

Public API:

    from casinohub.admin import (
        CollectionController,
        CollectionViewState,
        SortDirection,
        ViewStatus,
        StoreAuditLog,
        LoggingNotifier,
    )
"""

from casinohub.admin.audit import AuditAction, AuditEntry, AuditLog, StoreAuditLog
from casinohub.admin.controller import CollectionController
from casinohub.admin.notify import LoggingNotifier, Notifier
from casinohub.admin.state import CollectionViewState, SortDirection, ViewStatus

__all__ = [
    "AuditAction",
    "AuditEntry",
    "AuditLog",
    "CollectionController",
    "CollectionViewState",
    "LoggingNotifier",
    "Notifier",
    "SortDirection",
    "StoreAuditLog",
    "ViewStatus",
]
