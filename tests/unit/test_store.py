"""
Unit tests for the in-memory document store and shared store helpers.

Tests cover:
- CRUD and query filtering/ordering
- Patch semantics (dotted paths, DELETE_FIELD)
- Batch atomicity and the 500-operation limit
- Atomic find-or-create
- Snapshot delivery
"""

import pytest

from dashboard.mms_engine.config import EngineSettings, StoreBackend
from dashboard.mms_engine.errors import (
    BatchLimitExceededError,
    NotFoundError,
    StoreConnectionError,
    StoreError,
)
from dashboard.mms_engine.store import (
    DELETE_FIELD,
    InMemoryDocumentStore,
    SqliteDocumentStore,
    WriteOp,
    apply_patch,
    create_document_store,
    lookup,
)
from dashboard.mms_engine.store.base import matches_where, sort_documents


class TestApplyPatch:
    """Tests for update() patch semantics."""

    def test_top_level_merge(self):
        assert apply_patch({"a": 1, "b": 2}, {"b": 3, "c": 4}) == {"a": 1, "b": 3, "c": 4}

    def test_dotted_path_creates_maps(self):
        assert apply_patch({}, {"attendance.m1": {"x": 1}}) == {"attendance": {"m1": {"x": 1}}}

    def test_delete_field(self):
        doc = {"attendance": {"m1": {}, "m2": {}}, "name": "A"}
        assert apply_patch(doc, {"attendance.m1": DELETE_FIELD, "name": DELETE_FIELD}) == {
            "attendance": {"m2": {}}
        }

    def test_delete_missing_path_is_noop(self):
        assert apply_patch({"a": 1}, {"attendance.m1": DELETE_FIELD}) == {"a": 1}

    def test_original_untouched(self):
        doc = {"attendance": {"m1": {}}}
        apply_patch(doc, {"attendance.m2": {}})
        assert doc == {"attendance": {"m1": {}}}


class TestQueryHelpers:
    """Tests for where-clause matching and ordering."""

    def test_lookup(self):
        assert lookup({"a": {"b": 1}}, "a.b") == 1
        assert lookup({"a": 1}, "a.b") is None

    def test_where_operators(self):
        doc = {"type": "NCS", "n": 2}
        assert matches_where(doc, [("type", "==", "NCS")])
        assert matches_where(doc, [("type", "!=", "ISS")])
        assert matches_where(doc, [("n", "in", [1, 2])])
        assert not matches_where(doc, [("type", "==", "ISS")])
        with pytest.raises(ValueError):
            matches_where(doc, [("type", ">", "A")])

    def test_missing_values_sort_last(self):
        docs = [{"n": None}, {"n": "B"}, {"n": "A"}]
        assert [d["n"] for d in sort_documents(docs, "n")] == ["A", "B", None]
        assert [d["n"] for d in sort_documents(docs, "n", descending=True)] == ["B", "A", None]


class TestInMemoryDocumentStore:
    """Tests for InMemoryDocumentStore."""

    @pytest.fixture
    async def store(self):
        store = InMemoryDocumentStore()
        await store.connect()
        yield store
        await store.close()

    @pytest.mark.asyncio
    async def test_requires_connect(self):
        store = InMemoryDocumentStore()
        with pytest.raises(StoreConnectionError):
            await store.get("members", "m1")

    @pytest.mark.asyncio
    async def test_put_get_update_delete(self, store):
        doc_id = await store.put("members", {"fullName": "JANE"})
        assert (await store.get("members", doc_id)) == {"id": doc_id, "fullName": "JANE"}

        await store.update("members", doc_id, {"admitYear": 2023})
        assert (await store.get("members", doc_id))["admitYear"] == 2023

        await store.delete("members", doc_id)
        assert await store.get("members", doc_id) is None
        await store.delete("members", doc_id)

    @pytest.mark.asyncio
    async def test_update_missing_raises(self, store):
        with pytest.raises(NotFoundError):
            await store.update("members", "ghost", {"a": 1})

    @pytest.mark.asyncio
    async def test_reads_are_copies(self, store):
        doc_id = await store.put("members", {"tracks": ["ITT"]})
        doc = await store.get("members", doc_id)
        doc["tracks"].append("MBOT")
        assert (await store.get("members", doc_id))["tracks"] == ["ITT"]

    @pytest.mark.asyncio
    async def test_query_where_and_order(self, store):
        await store.put("events", {"type": "NCS", "date": "2024-01-01"})
        await store.put("events", {"type": "NCS", "date": "2024-02-01"})
        await store.put("events", {"type": "ISS", "date": "2024-03-01"})

        docs = await store.query("events", where=[("type", "==", "NCS")], order_by="date", descending=True)

        assert [d["date"] for d in docs] == ["2024-02-01", "2024-01-01"]

    @pytest.mark.asyncio
    async def test_batch_limit(self, store):
        ops = [WriteOp.put("members", f"m{i}", {}) for i in range(501)]
        with pytest.raises(BatchLimitExceededError) as exc_info:
            await store.batch_write(ops)
        assert exc_info.value.limit == 500
        assert store.document_count("members") == 0

    @pytest.mark.asyncio
    async def test_batch_all_or_nothing(self, store):
        await store.put("members", {"n": 1}, doc_id="m1")
        ops = [
            WriteOp.update("members", "m1", {"n": 2}),
            WriteOp.update("members", "ghost", {"n": 3}),
        ]
        with pytest.raises(StoreError):
            await store.batch_write(ops)
        assert (await store.get("members", "m1"))["n"] == 1

    @pytest.mark.asyncio
    async def test_batch_ops_see_earlier_ops(self, store):
        ops = [
            WriteOp.put("members", "m1", {"n": 1}),
            WriteOp.update("members", "m1", {"m": 2}),
            WriteOp.delete("members", "m2"),
        ]
        await store.batch_write(ops)
        assert (await store.get("members", "m1")) == {"id": "m1", "n": 1, "m": 2}

    @pytest.mark.asyncio
    async def test_upsert_by_field(self, store):
        first_id, created = await store.upsert_by_field(
            "members", "campusId", "1", {"campusId": "1", "fullName": "A"}, {"ncsEvents": []}
        )
        assert created is True
        assert (await store.get("members", first_id))["ncsEvents"] == []

        second_id, created = await store.upsert_by_field(
            "members", "campusId", "1", {"campusId": "1", "fullName": "B"}, {"ncsEvents": ["x"]}
        )
        assert created is False
        assert second_id == first_id
        doc = await store.get("members", first_id)
        assert doc["fullName"] == "B"
        assert doc["ncsEvents"] == []

    @pytest.mark.asyncio
    async def test_subscribe_snapshots(self, store):
        snapshots = []
        unsubscribe = store.subscribe("members", snapshots.append, order_by="n")
        await store.put("members", {"n": 2})
        await store.put("members", {"n": 1})
        await store.put("events", {"n": 0})

        assert [len(s) for s in snapshots] == [0, 1, 2]
        assert [d["n"] for d in snapshots[-1]] == [1, 2]

        unsubscribe()
        unsubscribe()
        await store.put("members", {"n": 3})
        assert len(snapshots) == 3

    @pytest.mark.asyncio
    async def test_listener_error_does_not_break_writes(self, store):
        def broken(documents):
            raise RuntimeError("boom")

        store.subscribe("members", broken)
        doc_id = await store.put("members", {"n": 1})
        assert await store.get("members", doc_id) is not None

    @pytest.mark.asyncio
    async def test_injected_failure(self, store):
        store.inject_failure("get", times=2)
        for _ in range(2):
            with pytest.raises(StoreError):
                await store.get("members", "m1")
        assert await store.get("members", "m1") is None


class TestCreateDocumentStore:
    """Tests for the backend factory."""

    def test_memory(self):
        assert isinstance(create_document_store(EngineSettings()), InMemoryDocumentStore)

    def test_sqlite(self, tmp_path):
        settings = EngineSettings(store_backend=StoreBackend.SQLITE, data_dir=str(tmp_path))
        store = create_document_store(settings)
        assert isinstance(store, SqliteDocumentStore)
        assert str(store.db_path) == str(tmp_path / "mms.db")
