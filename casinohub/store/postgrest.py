"""Hosted data store client using raw HTTP via httpx.

Talks to a PostgREST endpoint (the REST layer of the hosted Postgres the
site runs on): filters become ``col=eq.v`` / ``in.(...)`` / ``ilike.*x*``
query parameters, the page window is sent as a ``Range`` header and the
total count is read back from ``Content-Range``.

No vendor SDK dependency -- uses httpx.AsyncClient for direct API calls.
Change feeds are delegated to an injected ``ChangeFeed`` (the realtime
websocket lives outside this module).
"""

from __future__ import annotations

import logging
from typing import Any, Sequence

import httpx

from casinohub.errors import (
    AuthorizationError,
    ConstraintViolationError,
    DataStoreError,
    QueryValidationError,
    RecordNotFoundError,
    TransportError,
)
from casinohub.store.base import (
    Actor,
    ChangeCallback,
    ChangeFeed,
    DataStore,
    ErrorCallback,
    StoreSubscription,
)
from casinohub.store.query import QueryResult, QuerySpec, Record, active_filters

logger = logging.getLogger(__name__)

# Characters that force a value to be double-quoted inside in.(...) / or=(...)
_RESERVED = set(',.:()" ')


def _quote(value: Any) -> str:
    text = "true" if value is True else "false" if value is False else str(value)
    if any(ch in _RESERVED for ch in text):
        escaped = text.replace("\\", "\\\\").replace('"', '\\"')
        return f'"{escaped}"'
    return text


def build_params(query: QuerySpec) -> list[tuple[str, str]]:
    """Translate a ``QuerySpec`` into PostgREST query parameters.

    Args:
        query: The filter/search/sort description.

    Returns:
        Ordered ``(name, value)`` pairs suitable for ``httpx`` ``params``.
    """
    params: list[tuple[str, str]] = [("select", query.columns or "*")]

    for column, op, operand in active_filters(query.filters):
        if op == "in":
            params.append((column, f"in.({','.join(_quote(v) for v in operand)})"))
        elif op == "ilike":
            params.append((column, f"ilike.{operand.replace('%', '*')}"))
        else:
            params.append((column, f"eq.{_quote(operand)}"))

    if query.search_term and query.search_fields:
        term = query.search_term.replace("%", "").replace("*", "")
        clauses = ",".join(f"{f}.ilike.{_quote(f'*{term}*')}" for f in query.search_fields)
        params.append(("or", f"({clauses})"))

    if query.sort_column:
        direction = "asc" if query.ascending else "desc"
        nulls = "nullslast" if query.ascending else "nullsfirst"
        params.append(("order", f"{query.sort_column}.{direction}.{nulls}"))

    return params


def parse_content_range(header: str | None, fallback: int) -> int:
    """Extract the total from ``Content-Range: 0-9/25`` (or ``*/0``)."""
    if not header or "/" not in header:
        return fallback
    total = header.rsplit("/", 1)[1].strip()
    if total == "*":
        return fallback
    try:
        return int(total)
    except ValueError:
        logger.warning("Unparseable Content-Range header: %r", header)
        return fallback


class PostgrestDataStore(DataStore):
    """Async client for a PostgREST endpoint.

    Args:
        base_url: REST root, e.g. ``https://<project>.example.co/rest/v1``.
        api_key: Anonymous/service key sent as ``apikey`` and bearer token.
        change_feed: Realtime capability; ``on_change`` fails without it.
        auth_url: Optional auth root used by ``current_actor``.
        access_token: End-user JWT for ``current_actor``; falls back to ``api_key``.
        http_client: Override for testing (e.g. ``httpx.MockTransport``).
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        *,
        change_feed: ChangeFeed | None = None,
        auth_url: str | None = None,
        access_token: str | None = None,
        timeout: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._change_feed = change_feed
        self._auth_url = auth_url.rstrip("/") if auth_url else None
        self._access_token = access_token or api_key
        self._client = http_client or httpx.AsyncClient(
            base_url=self._base_url,
            headers={
                "apikey": api_key,
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
            timeout=httpx.Timeout(timeout),
        )
        self._owns_client = http_client is None

    async def aclose(self) -> None:
        """Close the underlying HTTP client if we own it."""
        if self._owns_client and not self._client.is_closed:
            await self._client.aclose()

    # -- Transport ----------------------------------------------------------

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            raise TransportError(f"{method} {url} timed out") from exc
        except httpx.TransportError as exc:
            raise TransportError(f"{method} {url} failed: {exc}") from exc

        if response.status_code == 416:
            # Offset past the end of the table: not an error for paging.
            return response
        if response.is_success:
            return response
        raise self._map_error(response)

    @staticmethod
    def _map_error(response: httpx.Response) -> DataStoreError:
        message = response.text
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            message = body.get("message") or body.get("msg") or message
        status = response.status_code
        detail = f"HTTP {status}: {message}"
        if status in (401, 403):
            return AuthorizationError(detail)
        if status == 404:
            return RecordNotFoundError(detail)
        if status == 409:
            return ConstraintViolationError(detail)
        if 400 <= status < 500:
            return QueryValidationError(detail)
        return TransportError(detail)

    @staticmethod
    def _rows(response: httpx.Response, what: str) -> list[Record]:
        """Decode a JSON array body; anything else is a broken upstream response."""
        try:
            rows = response.json()
        except ValueError as exc:
            raise TransportError(f"Non-JSON {what} response: HTTP {response.status_code}") from exc
        if not isinstance(rows, list):
            raise TransportError(f"Unexpected {what} response: expected a JSON array")
        return rows

    # -- Queries ------------------------------------------------------------

    async def select(self, collection: str, query: QuerySpec) -> QueryResult:
        headers = {"Prefer": "count=exact"}
        if query.range_start is not None and query.range_end is not None:
            headers["Range-Unit"] = "items"
            headers["Range"] = f"{query.range_start}-{query.range_end}"

        response = await self._request(
            "GET", f"/{collection}", params=build_params(query), headers=headers
        )
        records = [] if response.status_code == 416 else self._rows(response, f"select {collection}")
        total = parse_content_range(response.headers.get("content-range"), len(records))
        logger.debug("Selected %d/%d rows from %s", len(records), total, collection)
        return QueryResult(records=records, total_count=total)

    # -- Mutations ----------------------------------------------------------

    async def insert(self, collection: str, record: Record) -> Record:
        response = await self._request(
            "POST",
            f"/{collection}",
            json=record,
            headers={"Prefer": "return=representation"},
        )
        rows = self._rows(response, f"insert {collection}")
        if not rows:
            raise QueryValidationError(f"Insert into {collection} returned no row")
        return rows[0]

    async def update(self, collection: str, record_id: str, patch: Record) -> Record:
        response = await self._request(
            "PATCH",
            f"/{collection}",
            params=[("id", f"eq.{_quote(record_id)}")],
            json=patch,
            headers={"Prefer": "return=representation"},
        )
        rows = self._rows(response, f"update {collection}")
        if not rows:
            raise RecordNotFoundError(f"{collection} record not found: {record_id}")
        return rows[0]

    async def delete(self, collection: str, record_ids: Sequence[str]) -> None:
        ids = list(record_ids)
        if not ids:
            return
        await self._request(
            "DELETE",
            f"/{collection}",
            params=[("id", f"in.({','.join(_quote(i) for i in ids)})")],
        )
        logger.info("Deleted %d rows from %s", len(ids), collection)

    async def current_actor(self) -> Actor | None:
        if not self._auth_url:
            return None
        try:
            response = await self._client.get(
                f"{self._auth_url}/user",
                headers={"Authorization": f"Bearer {self._access_token}"},
            )
        except httpx.HTTPError:
            logger.warning("Actor lookup failed", exc_info=True)
            return None
        if response.status_code != 200:
            return None
        try:
            data = response.json()
        except ValueError:
            logger.warning("Actor lookup returned a non-JSON body")
            return None
        if not isinstance(data, dict):
            return None
        user_id = data.get("id")
        if not user_id:
            return None
        role = (data.get("app_metadata") or {}).get("role") or data.get("role") or "authenticated"
        return Actor(id=str(user_id), role=str(role))

    # -- Change feed --------------------------------------------------------

    async def on_change(
        self,
        collection: str,
        callback: ChangeCallback,
        on_error: ErrorCallback | None = None,
    ) -> StoreSubscription:
        if self._change_feed is None:
            raise TransportError("Realtime change feed is not configured")
        return await self._change_feed.on_change(collection, callback, on_error)

    async def unsubscribe(self, subscription: StoreSubscription) -> None:
        if self._change_feed is not None:
            await self._change_feed.unsubscribe(subscription)
