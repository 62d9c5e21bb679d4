"""Query description shared by every data store implementation.

A ``QuerySpec`` is what the CRUD controller builds from its view state;
stores translate it into their own dialect (in-memory evaluation or
PostgREST query parameters).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

from casinohub.errors import QueryValidationError

Record = dict[str, Any]

# Filter operators understood by every store.
FilterOp = str  # "eq" | "in" | "ilike"


@dataclass(frozen=True)
class QuerySpec:
    """Filter, search, sort and page window for one ``select`` call.

    ``range_end`` is inclusive, matching the ``Range: 0-9`` convention of
    the hosted store.
    """

    filters: Mapping[str, Any] = field(default_factory=dict)
    search_term: str = ""
    search_fields: tuple[str, ...] = ()
    sort_column: str | None = None
    ascending: bool = False
    range_start: int | None = None
    range_end: int | None = None
    columns: str = "*"

    def __post_init__(self) -> None:
        if (self.range_start is None) != (self.range_end is None):
            raise QueryValidationError("range_start and range_end must be given together")
        if self.range_start is not None and self.range_end is not None:
            if self.range_start < 0 or self.range_end < self.range_start:
                raise QueryValidationError(
                    f"invalid range [{self.range_start}, {self.range_end}]"
                )


@dataclass(frozen=True)
class QueryResult:
    """Rows for the requested window plus the count across all pages."""

    records: list[Record]
    total_count: int


def classify_filter(column: str, value: Any) -> tuple[FilterOp, Any] | None:
    """Map a filter value to an operator.

    ``None`` and ``""`` mean "no filter". Lists become ``in``, strings
    containing ``%`` become case-insensitive ``ilike``, scalars are ``eq``.

    Raises:
        QueryValidationError: For values no store can express (dicts, objects).
    """
    if value is None or value == "":
        return None
    if isinstance(value, (list, tuple, set, frozenset)):
        return "in", list(value)
    if isinstance(value, str) and "%" in value:
        return "ilike", value
    if isinstance(value, (str, bool, int, float)):
        return "eq", value
    raise QueryValidationError(
        f"Unsupported filter value for column '{column}': {type(value).__name__}"
    )


def active_filters(filters: Mapping[str, Any]) -> list[tuple[str, FilterOp, Any]]:
    """Return ``(column, op, value)`` triples for every non-empty filter."""
    triples: list[tuple[str, FilterOp, Any]] = []
    for column, value in filters.items():
        if not column:
            raise QueryValidationError("Filter column name must not be empty")
        classified = classify_filter(column, value)
        if classified is not None:
            op, operand = classified
            triples.append((column, op, operand))
    return triples
