"""View state owned by one ``CollectionController``."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from casinohub.store.query import Record


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"


class ViewStatus(str, Enum):
    """idle -> loading -> ready | errored; ready/errored -> loading on any change."""

    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    ERRORED = "errored"


@dataclass
class CollectionViewState:
    items: list[Record] = field(default_factory=list)
    total_count: int = 0
    current_page: int = 1
    page_size: int = 10
    sort_column: str = "created_at"
    sort_direction: SortDirection = SortDirection.DESC
    search_term: str = ""
    filters: dict[str, Any] = field(default_factory=dict)
    selected_ids: set[str] = field(default_factory=set)
    loading: bool = False
    error: str | None = None
    error_code: str | None = None
    status: ViewStatus = ViewStatus.IDLE

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total_count / self.page_size) if self.page_size else 0

    @property
    def window(self) -> tuple[int, int]:
        """Inclusive ``(start, end)`` row range of the current page."""
        start = (self.current_page - 1) * self.page_size
        return start, start + self.page_size - 1

    @property
    def item_ids(self) -> list[str]:
        return [str(item.get("id")) for item in self.items]
