"""Tests for the batching/debounce reconciler and apply_changes."""

import asyncio

import pytest


def _row(record_id, **fields):
    return {"id": record_id, **fields}


class TestApplyChanges:
    def test_insert_goes_first(self):
        from casinohub.realtime.events import ChangeEvent
        from casinohub.realtime.reconciler import apply_changes

        items = [_row("a"), _row("b")]
        result = apply_changes(items, [ChangeEvent.insert(_row("c"))])
        assert [r["id"] for r in result] == ["c", "a", "b"]
        assert len(items) == 2  # input untouched

    def test_batch_of_inserts_is_newest_first(self):
        from casinohub.realtime.events import ChangeEvent
        from casinohub.realtime.reconciler import apply_changes

        result = apply_changes(
            [_row("a")], [ChangeEvent.insert(_row("x")), ChangeEvent.insert(_row("y"))]
        )
        assert [r["id"] for r in result] == ["y", "x", "a"]

    def test_insert_of_existing_id_replaces(self):
        from casinohub.realtime.events import ChangeEvent
        from casinohub.realtime.reconciler import apply_changes

        result = apply_changes(
            [_row("a", name="old")], [ChangeEvent.insert(_row("a", name="new"))]
        )
        assert result == [_row("a", name="new")]

    def test_update_replaces_in_place(self):
        from casinohub.realtime.events import ChangeEvent
        from casinohub.realtime.reconciler import apply_changes

        items = [_row("a"), _row("b", name="old"), _row("c")]
        result = apply_changes(items, [ChangeEvent.update(_row("b", name="new"))])
        assert [r["id"] for r in result] == ["a", "b", "c"]
        assert result[1]["name"] == "new"

    def test_update_for_unknown_id_is_ignored(self):
        from casinohub.realtime.events import ChangeEvent
        from casinohub.realtime.reconciler import apply_changes

        result = apply_changes([_row("a")], [ChangeEvent.update(_row("zzz"))])
        assert result == [_row("a")]

    def test_delete_then_insert_same_batch(self):
        from casinohub.realtime.events import ChangeEvent
        from casinohub.realtime.reconciler import apply_changes

        result = apply_changes(
            [_row("a"), _row("b")],
            [ChangeEvent.delete("a"), ChangeEvent.insert(_row("d")), ChangeEvent.update(_row("b", x=1))],
        )
        assert result == [_row("d"), _row("b", x=1)]


class TestBatchReconciler:
    @pytest.mark.asyncio
    async def test_debounce_yields_single_flush(self):
        from casinohub.realtime.events import ChangeEvent
        from casinohub.realtime.reconciler import BatchReconciler

        flushed = []
        reconciler = BatchReconciler(flushed.append, lambda rid: None, debounce_ms=30)

        for rid in ("a", "b", "c"):
            reconciler.enqueue(ChangeEvent.insert(_row(rid)))
            await asyncio.sleep(0.005)

        assert flushed == []
        assert reconciler.timer_pending
        await asyncio.sleep(0.1)

        assert len(flushed) == 1
        assert [e.record_id for e in flushed[0]] == ["a", "b", "c"]
        assert reconciler.flush_count == 1
        assert len(reconciler) == 0

    @pytest.mark.asyncio
    async def test_same_id_keeps_latest_event(self):
        from casinohub.realtime.events import ChangeEvent, ChangeKind
        from casinohub.realtime.reconciler import BatchReconciler

        flushed = []
        reconciler = BatchReconciler(flushed.append, lambda rid: None)
        reconciler.enqueue(ChangeEvent.update(_row("a", v=1)))
        reconciler.enqueue(ChangeEvent.update(_row("a", v=2)))
        reconciler.enqueue(ChangeEvent.update(_row("a", v=3)))

        assert len(reconciler) == 1
        reconciler.flush()
        assert len(flushed[0]) == 1
        assert flushed[0][0].kind is ChangeKind.UPDATE
        assert flushed[0][0].record["v"] == 3

    @pytest.mark.asyncio
    async def test_update_after_queued_insert_stays_insert(self):
        from casinohub.realtime.events import ChangeEvent, ChangeKind
        from casinohub.realtime.reconciler import BatchReconciler

        reconciler = BatchReconciler(lambda batch: None, lambda rid: None)
        reconciler.enqueue(ChangeEvent.insert(_row("a", v=1)))
        reconciler.enqueue(ChangeEvent.update(_row("a", v=2)))

        [event] = reconciler.pending
        assert event.kind is ChangeKind.INSERT
        assert event.record["v"] == 2
        reconciler.discard()

    @pytest.mark.asyncio
    async def test_tenth_event_flushes_synchronously(self):
        from casinohub.realtime.events import ChangeEvent
        from casinohub.realtime.reconciler import BatchReconciler

        flushed = []
        reconciler = BatchReconciler(flushed.append, lambda rid: None, batch_size=10, debounce_ms=1000)

        for i in range(9):
            reconciler.enqueue(ChangeEvent.insert(_row(f"r{i}")))
        assert flushed == []

        reconciler.enqueue(ChangeEvent.insert(_row("r9")))
        assert len(flushed) == 1
        assert len(flushed[0]) == 10
        assert len(reconciler) == 0
        assert not reconciler.timer_pending

    @pytest.mark.asyncio
    async def test_delete_bypasses_queue(self):
        from casinohub.realtime.events import ChangeEvent
        from casinohub.realtime.reconciler import BatchReconciler

        deleted = []
        flushed = []
        reconciler = BatchReconciler(flushed.append, deleted.append, debounce_ms=1000)
        reconciler.enqueue(ChangeEvent.insert(_row("a")))
        reconciler.enqueue(ChangeEvent.insert(_row("b")))
        reconciler.enqueue(ChangeEvent.delete("a"))

        assert deleted == ["a"]
        assert [e.record_id for e in reconciler.pending] == ["b"]
        assert flushed == []
        reconciler.discard()

    @pytest.mark.asyncio
    async def test_close_flushes_pending(self):
        from casinohub.realtime.events import ChangeEvent
        from casinohub.realtime.reconciler import BatchReconciler

        flushed = []
        reconciler = BatchReconciler(flushed.append, lambda rid: None, debounce_ms=1000)
        reconciler.enqueue(ChangeEvent.insert(_row("a")))

        assert reconciler.close() == 1
        assert len(flushed) == 1
        assert not reconciler.timer_pending
        with pytest.raises(RuntimeError):
            reconciler.enqueue(ChangeEvent.insert(_row("b")))

    @pytest.mark.asyncio
    async def test_close_without_flush_discards(self):
        from casinohub.realtime.events import ChangeEvent
        from casinohub.realtime.reconciler import BatchReconciler

        flushed = []
        reconciler = BatchReconciler(flushed.append, lambda rid: None, debounce_ms=10)
        reconciler.enqueue(ChangeEvent.insert(_row("a")))
        assert reconciler.close(flush=False) == 1
        await asyncio.sleep(0.05)
        assert flushed == []

    def test_flush_on_empty_queue_is_noop(self):
        from casinohub.realtime.reconciler import BatchReconciler

        flushed = []
        reconciler = BatchReconciler(flushed.append, lambda rid: None)
        assert reconciler.flush() == 0
        assert flushed == []
        assert reconciler.flush_count == 0

    def test_invalid_batch_size(self):
        from casinohub.realtime.reconciler import BatchReconciler

        with pytest.raises(ValueError):
            BatchReconciler(lambda b: None, lambda r: None, batch_size=0)

    def test_from_settings(self, fast_settings):
        from casinohub.realtime.reconciler import BatchReconciler

        reconciler = BatchReconciler.from_settings(lambda b: None, lambda r: None, fast_settings)
        assert reconciler.batch_size == 10
        assert reconciler.debounce_ms == 50
