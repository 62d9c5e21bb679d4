"""Content context: the one store/subscription/audit bundle a site session uses.

Created once (first controller mount) and passed by reference to every
controller, rather than living in a hidden module-level singleton, so tests
can build as many isolated contexts as they like.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from casinohub.admin.audit import AuditLog, StoreAuditLog
from casinohub.admin.controller import CollectionController
from casinohub.admin.notify import LoggingNotifier, Notifier
from casinohub.config import Settings, get_settings
from casinohub.realtime.subscription import SubscriptionManager
from casinohub.store.base import DataStore
from casinohub.store.memory import InMemoryDataStore
from casinohub.store.postgrest import PostgrestDataStore

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings | None = None) -> None:
    """Configure root logging from ``LOG_LEVEL``."""
    settings = settings or get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def build_data_store(settings: Settings) -> DataStore:
    """Return the data store selected by ``DATA_STORE``."""
    if settings.DATA_STORE == "postgrest":
        if not settings.POSTGREST_URL:
            logger.warning("DATA_STORE=postgrest but POSTGREST_URL not set, falling back to memory")
            return InMemoryDataStore()
        logger.info("Using PostgREST data store (env=%s)", settings.ENVIRONMENT)
        return PostgrestDataStore(
            settings.POSTGREST_URL,
            settings.POSTGREST_API_KEY.get_secret_value(),
            timeout=settings.HTTP_TIMEOUT_SECONDS,
        )
    return InMemoryDataStore()


@dataclass
class ContentContext:
    settings: Settings
    store: DataStore
    subscriptions: SubscriptionManager
    audit: AuditLog
    notifier: Notifier

    def controller(self, collection: str, **kwargs: Any) -> CollectionController:
        """Create a controller bound to this context (state is per controller)."""
        return CollectionController(self, collection, **kwargs)

    async def pause(self) -> None:
        await self.subscriptions.pause()

    async def resume(self) -> None:
        await self.subscriptions.resume()

    async def aclose(self) -> None:
        """Close every subscription, then the store's connections."""
        await self.subscriptions.aclose()
        await self.store.aclose()


def create_context(
    settings: Settings | None = None,
    *,
    store: DataStore | None = None,
    audit: AuditLog | None = None,
    notifier: Notifier | None = None,
) -> ContentContext:
    """Build a context from settings, overriding any collaborator given."""
    settings = settings or get_settings()
    store = store or build_data_store(settings)
    return ContentContext(
        settings=settings,
        store=store,
        subscriptions=SubscriptionManager.from_settings(store, settings),
        audit=audit
        or StoreAuditLog(
            store,
            collection=settings.AUDIT_COLLECTION,
            actor_ttl=settings.AUDIT_ACTOR_CACHE_TTL,
        ),
        notifier=notifier or LoggingNotifier(),
    )
