"""Tests for the in-memory data store: query semantics, mutations, change feed."""

import pytest


def _seeded(casino_rows):
    from casinohub.store.memory import InMemoryDataStore

    store = InMemoryDataStore()
    store.seed("casinos", casino_rows)
    return store


class TestSelect:
    @pytest.mark.asyncio
    async def test_page_window_and_total(self, casino_rows):
        from casinohub.store.query import QuerySpec

        store = _seeded(casino_rows)
        result = await store.select(
            "casinos",
            QuerySpec(sort_column="created_at", ascending=True, range_start=10, range_end=19),
        )
        assert result.total_count == 25
        assert [r["id"] for r in result.records] == [f"casino-{i:02d}" for i in range(11, 21)]

    @pytest.mark.asyncio
    async def test_range_past_end_returns_empty(self, casino_rows):
        from casinohub.store.query import QuerySpec

        store = _seeded(casino_rows)
        result = await store.select("casinos", QuerySpec(range_start=40, range_end=49))
        assert result.records == []
        assert result.total_count == 25

    @pytest.mark.asyncio
    async def test_eq_and_in_filters(self, casino_rows):
        from casinohub.store.query import QuerySpec

        store = _seeded(casino_rows)
        active = await store.select("casinos", QuerySpec(filters={"is_active": True}))
        assert all(r["is_active"] for r in active.records)
        assert active.total_count == 17

        picked = await store.select(
            "casinos", QuerySpec(filters={"id": ["casino-01", "casino-02", "nope"]})
        )
        assert {r["id"] for r in picked.records} == {"casino-01", "casino-02"}

    @pytest.mark.asyncio
    async def test_ilike_filter_is_case_insensitive(self, casino_rows):
        from casinohub.store.query import QuerySpec

        store = _seeded(casino_rows)
        result = await store.select("casinos", QuerySpec(filters={"name": "%casino 0%"}))
        assert result.total_count == 9

    @pytest.mark.asyncio
    async def test_search_across_fields(self, casino_rows):
        from casinohub.store.query import QuerySpec

        store = _seeded(casino_rows)
        result = await store.select(
            "casinos",
            QuerySpec(search_term="LIVE DEALER", search_fields=("name", "description")),
        )
        assert result.total_count == 13
        assert all("Live dealer" in r["description"] for r in result.records)

    @pytest.mark.asyncio
    async def test_descending_sort_puts_nulls_first(self):
        from casinohub.store.memory import InMemoryDataStore
        from casinohub.store.query import QuerySpec

        store = InMemoryDataStore()
        store.seed("casinos", [{"id": "a", "rating": 7}, {"id": "b", "rating": None}, {"id": "c", "rating": 9}])
        desc = await store.select("casinos", QuerySpec(sort_column="rating", ascending=False))
        assert [r["id"] for r in desc.records] == ["b", "c", "a"]
        asc = await store.select("casinos", QuerySpec(sort_column="rating", ascending=True))
        assert [r["id"] for r in asc.records] == ["a", "c", "b"]

    @pytest.mark.asyncio
    async def test_unsortable_column_is_validation_error(self):
        from casinohub.errors import QueryValidationError
        from casinohub.store.memory import InMemoryDataStore
        from casinohub.store.query import QuerySpec

        store = InMemoryDataStore()
        store.seed("casinos", [{"id": "a", "rating": 7}, {"id": "b", "rating": "high"}])
        with pytest.raises(QueryValidationError, match="Cannot sort"):
            await store.select("casinos", QuerySpec(sort_column="rating"))

    @pytest.mark.asyncio
    async def test_column_projection(self, casino_rows):
        from casinohub.store.query import QuerySpec

        store = _seeded(casino_rows)
        result = await store.select("casinos", QuerySpec(columns="id,name", range_start=0, range_end=0))
        assert set(result.records[0]) == {"id", "name"}

    @pytest.mark.asyncio
    async def test_queries_are_recorded(self, casino_rows):
        from casinohub.store.query import QuerySpec

        store = _seeded(casino_rows)
        query = QuerySpec(range_start=0, range_end=9)
        await store.select("casinos", query)
        assert store.queries == [("casinos", query)]


class TestMutations:
    @pytest.mark.asyncio
    async def test_insert_assigns_id_and_timestamps(self):
        from casinohub.store.memory import InMemoryDataStore

        store = InMemoryDataStore()
        row = await store.insert("casinos", {"name": "Royal Spin"})
        assert row["id"]
        assert row["created_at"] and row["updated_at"]
        assert store.rows("casinos") == [row]

    @pytest.mark.asyncio
    async def test_duplicate_id_is_constraint_violation(self):
        from casinohub.errors import ConstraintViolationError
        from casinohub.store.memory import InMemoryDataStore

        store = InMemoryDataStore()
        await store.insert("casinos", {"id": "c1", "name": "A"})
        with pytest.raises(ConstraintViolationError):
            await store.insert("casinos", {"id": "c1", "name": "B"})

    @pytest.mark.asyncio
    async def test_update_missing_record(self):
        from casinohub.errors import RecordNotFoundError
        from casinohub.store.memory import InMemoryDataStore

        store = InMemoryDataStore()
        with pytest.raises(RecordNotFoundError):
            await store.update("casinos", "ghost", {"name": "X"})

    @pytest.mark.asyncio
    async def test_update_cannot_change_id(self):
        from casinohub.errors import QueryValidationError
        from casinohub.store.memory import InMemoryDataStore

        store = InMemoryDataStore()
        await store.insert("casinos", {"id": "c1", "name": "A"})
        with pytest.raises(QueryValidationError):
            await store.update("casinos", "c1", {"id": "c2"})

    @pytest.mark.asyncio
    async def test_returned_rows_are_copies(self):
        from casinohub.store.memory import InMemoryDataStore

        store = InMemoryDataStore()
        row = await store.insert("casinos", {"id": "c1", "name": "A"})
        row["name"] = "mutated"
        assert store.rows("casinos")[0]["name"] == "A"

    @pytest.mark.asyncio
    async def test_fail_next_injects_errors(self):
        from casinohub.errors import TransportError
        from casinohub.store.memory import InMemoryDataStore

        store = InMemoryDataStore()
        store.fail_next("delete", TransportError("offline"))
        with pytest.raises(TransportError):
            await store.delete("casinos", ["c1"])
        await store.delete("casinos", ["c1"])  # second call succeeds


class TestChangeFeed:
    @pytest.mark.asyncio
    async def test_mutations_emit_payloads(self):
        from casinohub.store.memory import InMemoryDataStore

        store = InMemoryDataStore()
        payloads = []
        await store.on_change("casinos", payloads.append)

        await store.insert("casinos", {"id": "c1", "name": "A"})
        await store.update("casinos", "c1", {"name": "B"})
        await store.delete("casinos", ["c1"])

        assert [p["eventType"] for p in payloads] == ["INSERT", "UPDATE", "DELETE"]
        assert payloads[1]["new"]["name"] == "B"
        assert payloads[1]["old"]["name"] == "A"
        assert payloads[2]["old"]["id"] == "c1"

    @pytest.mark.asyncio
    async def test_other_collections_not_notified(self):
        from casinohub.store.memory import InMemoryDataStore

        store = InMemoryDataStore()
        payloads = []
        await store.on_change("news", payloads.append)
        await store.insert("casinos", {"id": "c1", "name": "A"})
        assert payloads == []

    @pytest.mark.asyncio
    async def test_unsubscribe_stops_delivery(self):
        from casinohub.store.memory import InMemoryDataStore

        store = InMemoryDataStore()
        payloads = []
        sub = await store.on_change("casinos", payloads.append)
        await store.unsubscribe(sub)
        await store.unsubscribe(sub)
        await store.insert("casinos", {"id": "c1", "name": "A"})
        assert payloads == []
        assert store.subscriber_count("casinos") == 0

    @pytest.mark.asyncio
    async def test_fail_subscribes(self):
        from casinohub.errors import TransportError
        from casinohub.store.memory import InMemoryDataStore

        store = InMemoryDataStore()
        store.fail_subscribes(1)
        with pytest.raises(TransportError):
            await store.on_change("casinos", lambda p: None)
        await store.on_change("casinos", lambda p: None)
        assert store.subscriber_count("casinos") == 1

    @pytest.mark.asyncio
    async def test_drop_subscriptions_reports_errors(self):
        from casinohub.store.memory import InMemoryDataStore

        store = InMemoryDataStore()
        errors = []
        await store.on_change("casinos", lambda p: None, errors.append)
        assert store.drop_subscriptions("casinos") == 1
        assert len(errors) == 1
        assert store.subscriber_count("casinos") == 0

    @pytest.mark.asyncio
    async def test_report_errors_keeps_registrations(self):
        from casinohub.store.memory import InMemoryDataStore

        store = InMemoryDataStore()
        errors = []
        await store.on_change("casinos", lambda p: None, errors.append)
        assert store.report_errors("casinos") == 1
        assert str(errors[0]) == "channel error"
        assert store.subscriber_count("casinos") == 1

    @pytest.mark.asyncio
    async def test_current_actor(self, admin_actor):
        from casinohub.store.memory import InMemoryDataStore

        store = InMemoryDataStore()
        assert await store.current_actor() is None
        store.set_actor(admin_actor)
        assert await store.current_actor() == admin_actor
