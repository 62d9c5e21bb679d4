"""Abstract data store: queries, mutations, change feeds and identity.

Default: InMemoryDataStore (local dev, tests).
Production: PostgrestDataStore (hosted Postgres REST endpoint).

Switch via DATA_STORE env var: "memory" (default) | "postgrest".
"""

from __future__ import annotations

import itertools
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Sequence

from casinohub.store.query import QueryResult, QuerySpec, Record

# Raw change payload as emitted by the backend: ``{"eventType", "new", "old"}``.
ChangePayload = dict[str, Any]
ChangeCallback = Callable[[ChangePayload], None]
ErrorCallback = Callable[[Exception], None]

_subscription_ids = itertools.count(1)


@dataclass(frozen=True)
class Actor:
    """Authenticated identity, used only to tag audit entries."""

    id: str
    role: str = "authenticated"


@dataclass(eq=False)
class StoreSubscription:
    """Backend-side handle for one live change-feed subscription."""

    collection: str
    callback: ChangeCallback
    on_error: ErrorCallback | None = None
    id: int = field(default_factory=lambda: next(_subscription_ids))
    active: bool = True


class ChangeFeed(ABC):
    """Subscribe-to-changes capability, per collection."""

    @abstractmethod
    async def on_change(
        self,
        collection: str,
        callback: ChangeCallback,
        on_error: ErrorCallback | None = None,
    ) -> StoreSubscription:
        """Open a subscription; returns once the backend acknowledges it.

        Raises:
            TransportError: When the subscription cannot be established.
        """

    @abstractmethod
    async def unsubscribe(self, subscription: StoreSubscription) -> None:
        """Release a subscription. Unsubscribing twice is a no-op."""


class DataStore(ChangeFeed):
    """Abstract data store over named record collections."""

    @abstractmethod
    async def select(self, collection: str, query: QuerySpec) -> QueryResult: ...

    @abstractmethod
    async def insert(self, collection: str, record: Record) -> Record: ...

    @abstractmethod
    async def update(self, collection: str, record_id: str, patch: Record) -> Record: ...

    @abstractmethod
    async def delete(self, collection: str, record_ids: Sequence[str]) -> None:
        """Delete every id in one atomic operation (all-or-nothing)."""

    @abstractmethod
    async def current_actor(self) -> Actor | None: ...

    async def aclose(self) -> None:
        """Release network resources. Default: nothing to release."""
