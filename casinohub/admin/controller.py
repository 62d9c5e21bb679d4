"""Generic CRUD controller over one collection.

Wraps query/filter/sort/paginate/select/mutate into one state container
that admin pages drive. Mutations never patch ``items`` optimistically:
on success they refetch, because page boundaries can shift under them.

With ``realtime=True`` the controller also subscribes to the collection's
change stream and feeds events through a ``BatchReconciler`` whose flush
target is ``items``. Deletes are applied at once; ``total_count`` is only
ever set from a server response.

Usage::

    async with context.controller("casinos", realtime=True) as casinos:
        await casinos.set_search_term("royal")
        print(casinos.state.items)
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Iterable, Mapping

from casinohub.admin.audit import AuditAction
from casinohub.admin.state import CollectionViewState, SortDirection, ViewStatus
from casinohub.errors import DataStoreError, ErrorCode, QueryValidationError
from casinohub.realtime.events import ChangeEvent
from casinohub.realtime.reconciler import BatchReconciler, apply_changes
from casinohub.realtime.subscription import SubscriptionHandle, SubscriptionState
from casinohub.store.query import QuerySpec, Record
from casinohub.store.validation import validate_record

if TYPE_CHECKING:
    from casinohub.context import ContentContext

logger = logging.getLogger(__name__)


def _dedupe(records: Iterable[Record]) -> list[Record]:
    seen: set[str] = set()
    unique: list[Record] = []
    for record in records:
        record_id = str(record.get("id"))
        if record_id in seen:
            continue
        seen.add(record_id)
        unique.append(record)
    return unique


class CollectionController:
    """Query/mutate/paginate state for one collection.

    Args:
        context: Shared store, subscription manager, audit log and notifier.
        collection: Table name, e.g. ``"casinos"``.
        page_size: Rows per page (defaults to ``CRUD_PAGE_SIZE``).
        sort_column: Initial sort column.
        sort_direction: Initial sort direction.
        filters: Initial column filters (see ``classify_filter``).
        search_fields: Text columns searched by ``set_search_term``.
        columns: Projection passed to the store.
        realtime: Keep ``items`` live via the collection's change stream.
    """

    def __init__(
        self,
        context: "ContentContext",
        collection: str,
        *,
        page_size: int | None = None,
        sort_column: str = "created_at",
        sort_direction: SortDirection | str = SortDirection.DESC,
        filters: Mapping[str, Any] | None = None,
        search_fields: Iterable[str] | None = None,
        columns: str = "*",
        realtime: bool = False,
    ) -> None:
        if not collection:
            raise ValueError("collection name must not be empty")
        settings = context.settings
        self._context = context
        self.collection = collection
        self.columns = columns
        self.realtime = realtime
        self.search_fields = tuple(
            search_fields if search_fields is not None else settings.CRUD_SEARCH_FIELDS
        )
        self._initial = dict(
            page_size=page_size or settings.CRUD_PAGE_SIZE,
            sort_column=sort_column,
            sort_direction=SortDirection(sort_direction),
        )
        self._initial_filters = dict(filters or {})
        self.state = self._fresh_state()

        self._generation = 0
        self._handle: SubscriptionHandle | None = None
        self._reconciler: BatchReconciler | None = None

    def _fresh_state(self) -> CollectionViewState:
        return CollectionViewState(filters=dict(self._initial_filters), **self._initial)

    @property
    def label(self) -> str:
        """Singular form of the collection name for messages ("casinos" -> "casino")."""
        name = self.collection
        if name.endswith("ies"):
            return name[:-3] + "y"
        if name.endswith(("uses", "sses")):
            return name[:-2]
        if name.endswith("s") and not name.endswith(("ss", "news")):
            return name[:-1]
        return name

    # -- Lifecycle ----------------------------------------------------------

    async def start(self) -> None:
        """Open the realtime subscription (if enabled) and load the first page."""
        if self.realtime and self._handle is None:
            self._reconciler = BatchReconciler.from_settings(
                self._apply_batch, self._apply_delete, self._context.settings
            )
            self._handle = await self._context.subscriptions.open(
                self.collection, self._on_change
            )
        await self.fetch()

    async def close(self, *, flush: bool = True) -> None:
        """Release the subscription, then flush (or discard) pending events."""
        handle, self._handle = self._handle, None
        if handle is not None:
            await handle.close()
        reconciler, self._reconciler = self._reconciler, None
        if reconciler is not None:
            reconciler.close(flush=flush)

    async def __aenter__(self) -> "CollectionController":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    @property
    def subscription(self) -> SubscriptionHandle | None:
        return self._handle

    @property
    def realtime_state(self) -> SubscriptionState:
        return self._handle.state if self._handle is not None else SubscriptionState()

    @property
    def reconciler(self) -> BatchReconciler | None:
        return self._reconciler

    # -- Realtime -----------------------------------------------------------

    def _on_change(self, event: ChangeEvent) -> None:
        if self._reconciler is not None:
            self._reconciler.enqueue(event)

    def _apply_batch(self, events: list[ChangeEvent]) -> None:
        self.state.items = apply_changes(self.state.items, events)

    def _apply_delete(self, record_id: str) -> None:
        self.state.items = [r for r in self.state.items if str(r.get("id")) != record_id]
        self.state.selected_ids.discard(record_id)

    # -- Fetching -----------------------------------------------------------

    def build_query(self) -> QuerySpec:
        start, end = self.state.window
        return QuerySpec(
            filters=dict(self.state.filters),
            search_term=self.state.search_term,
            search_fields=self.search_fields,
            sort_column=self.state.sort_column,
            ascending=self.state.sort_direction is SortDirection.ASC,
            range_start=start,
            range_end=end,
            columns=self.columns,
        )

    async def fetch(self) -> None:
        """Load the current page. On failure prior items stay in place."""
        self._generation += 1
        generation = self._generation
        self.state.loading = True
        self.state.status = ViewStatus.LOADING
        self.state.error = None
        self.state.error_code = None

        try:
            result = await self._context.store.select(self.collection, self.build_query())
        except DataStoreError as exc:
            if generation != self._generation:
                return
            self.state.loading = False
            self.state.status = ViewStatus.ERRORED
            self._surface(exc, f"Failed to fetch {self.collection}")
            return
        except Exception as exc:
            # Not a store failure: leave the view settled, then propagate.
            if generation == self._generation:
                self.state.loading = False
                self.state.status = ViewStatus.ERRORED
                self.state.error = str(exc) or type(exc).__name__
                self.state.error_code = ErrorCode.INTERNAL.value
            logger.error("Unexpected failure fetching %s", self.collection, exc_info=True)
            raise

        if generation != self._generation:
            logger.debug("Discarding superseded %s fetch", self.collection)
            return

        self.state.items = _dedupe(result.records)
        self.state.total_count = result.total_count
        self.state.loading = False
        self.state.status = ViewStatus.READY
        logger.debug(
            "Fetched %s page %d: %d/%d rows",
            self.collection,
            self.state.current_page,
            len(self.state.items),
            self.state.total_count,
        )

    async def refresh(self) -> None:
        await self.fetch()

    def _surface(self, exc: DataStoreError, prefix: str) -> None:
        self.state.error = str(exc)
        self.state.error_code = exc.code.value
        logger.warning("%s: %s", prefix, exc)
        self._context.notifier.error(f"{prefix}: {exc}")

    # -- Mutations ----------------------------------------------------------

    async def create(self, data: Mapping[str, Any]) -> Record | None:
        """Insert a record, audit it, and refetch. Returns the stored row."""
        valid, errors = validate_record(self.collection, data)
        if not valid:
            self._surface(QueryValidationError("; ".join(errors)), f"Failed to create {self.label}")
            return None
        try:
            record = await self._context.store.insert(self.collection, dict(data))
        except DataStoreError as exc:
            self._surface(exc, f"Failed to create {self.label}")
            return None

        await self._context.audit.record(
            AuditAction.CREATE, self.collection, str(record.get("id")), {"created_data": dict(data)}
        )
        self._context.notifier.success(f"{self.label} created successfully")
        await self.fetch()
        return record

    async def update(self, record_id: str, data: Mapping[str, Any]) -> Record | None:
        """Patch a record, audit it, and refetch. Returns the stored row."""
        valid, errors = validate_record(self.collection, data, partial=True)
        if not valid:
            self._surface(QueryValidationError("; ".join(errors)), f"Failed to update {self.label}")
            return None
        try:
            record = await self._context.store.update(self.collection, record_id, dict(data))
        except DataStoreError as exc:
            self._surface(exc, f"Failed to update {self.label}")
            return None

        await self._context.audit.record(
            AuditAction.UPDATE, self.collection, record_id, {"updated_data": dict(data)}
        )
        self._context.notifier.success(f"{self.label} updated successfully")
        await self.fetch()
        return record

    async def delete(self, record_id: str) -> bool:
        try:
            await self._context.store.delete(self.collection, [record_id])
        except DataStoreError as exc:
            self._surface(exc, f"Failed to delete {self.label}")
            return False

        self.state.selected_ids.discard(record_id)
        await self._context.audit.record(AuditAction.DELETE, self.collection, record_id, {})
        self._context.notifier.success(f"{self.label} deleted successfully")
        await self.fetch()
        return True

    async def delete_many(self, record_ids: Iterable[str]) -> bool:
        """Delete several records in one all-or-nothing call."""
        ids = list(dict.fromkeys(str(i) for i in record_ids))
        if not ids:
            return True
        try:
            await self._context.store.delete(self.collection, ids)
        except DataStoreError as exc:
            self._surface(exc, f"Failed to delete {self.collection}")
            return False

        for record_id in ids:
            await self._context.audit.record(
                AuditAction.DELETE, self.collection, record_id, {"bulk_delete": True}
            )
        self._context.notifier.success(f"{len(ids)} {self.collection} deleted successfully")
        self.state.selected_ids.clear()
        await self.fetch()
        return True

    # -- Pagination ---------------------------------------------------------

    async def set_page(self, page: int) -> None:
        last = max(1, self.state.total_pages)
        self.state.current_page = min(max(1, page), last)
        await self.fetch()

    async def next_page(self) -> None:
        await self.set_page(self.state.current_page + 1)

    async def prev_page(self) -> None:
        await self.set_page(self.state.current_page - 1)

    # -- View parameters (each resets to page 1) ----------------------------

    async def set_search_term(self, term: str) -> None:
        self.state.search_term = term
        self.state.current_page = 1
        await self.fetch()

    async def set_sort_by(self, column: str) -> None:
        if not column:
            raise ValueError("sort column must not be empty")
        self.state.sort_column = column
        self.state.current_page = 1
        await self.fetch()

    async def set_sort_order(self, direction: SortDirection | str) -> None:
        self.state.sort_direction = SortDirection(direction)
        self.state.current_page = 1
        await self.fetch()

    async def set_filters(self, filters: Mapping[str, Any]) -> None:
        self.state.filters = dict(filters)
        self.state.current_page = 1
        await self.fetch()

    # -- Selection (local only) ---------------------------------------------

    def select_item(self, record_id: str) -> None:
        """Toggle one id in the selection."""
        if record_id in self.state.selected_ids:
            self.state.selected_ids.discard(record_id)
        else:
            self.state.selected_ids.add(record_id)

    def select_all(self) -> None:
        """Select every loaded item, or clear when all are already selected."""
        loaded = set(self.state.item_ids)
        if loaded and self.state.selected_ids >= loaded:
            self.state.selected_ids = set()
        else:
            self.state.selected_ids = loaded

    def clear_selection(self) -> None:
        self.state.selected_ids = set()

    def reset(self) -> None:
        """Back to the initial view; the subscription (if any) stays open."""
        self._generation += 1
        if self._reconciler is not None:
            self._reconciler.discard()
        self.state = self._fresh_state()
