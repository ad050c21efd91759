"""
Tests for the record stores (in-memory and SQLite).
"""

import json
from datetime import datetime, timezone

import pytest

from worksheet_vault.core.dao import InMemoryRecordStore, SQLiteRecordStore, create_record_store
from worksheet_vault.core.db import get_db, health_check
from worksheet_vault.core.errors import RecordNotFoundError, StoreError


@pytest.fixture(params=["memory", "sqlite"])
def any_store(request, tmp_path):
    if request.param == "memory":
        return InMemoryRecordStore()
    return SQLiteRecordStore(str(tmp_path / "worksheets.db"))


class TestRecordStoreContract:
    """Behaviour shared by every IRecordStore implementation."""

    async def test_upsert_then_get(self, any_store):
        record = await any_store.upsert("u1", 1, "ws-a", {"notes": "enc"}, completed=False)

        assert record.document == {"notes": "enc"}
        assert record.completed is False
        assert record.completed_at is None

        fetched = await any_store.get("u1", 1, "ws-a")
        assert fetched.document == {"notes": "enc"}
        assert fetched.progress == 50

    async def test_upsert_replaces_document_and_keeps_created_at(self, any_store):
        first = await any_store.upsert("u1", 1, "ws-a", {"a": 1, "b": 2})
        second = await any_store.upsert("u1", 1, "ws-a", {"a": 3}, completed=True)

        assert second.document == {"a": 3}
        assert second.created_at == first.created_at
        assert second.updated_at >= first.updated_at
        assert second.completed is True
        assert second.completed_at is not None
        assert second.progress == 100

    async def test_given_completion_time_is_kept(self, any_store):
        finished = datetime(2024, 3, 1, 9, 30, tzinfo=timezone.utc)

        kept = await any_store.upsert("u1", 1, "ws-a", {"a": 1}, completed=True, completed_at=finished)
        ignored = await any_store.upsert("u1", 1, "ws-b", {"a": 1}, completed=False, completed_at=finished)

        assert kept.completed_at == finished
        assert (await any_store.get("u1", 1, "ws-a")).completed_at == finished
        assert ignored.completed_at is None

    async def test_get_missing_raises_not_found(self, any_store):
        with pytest.raises(RecordNotFoundError) as exc_info:
            await any_store.get("u1", 1, "missing")

        assert exc_info.value.record_key == "missing"

    async def test_list_for_owner_orders_by_phase_and_filters(self, any_store):
        await any_store.upsert("u1", 2, "b", {})
        await any_store.upsert("u1", 1, "z", {})
        await any_store.upsert("u1", 1, "a", {})
        await any_store.upsert("u2", 1, "a", {})

        records = await any_store.list_for_owner("u1")
        assert [(r.group_key, r.record_key) for r in records] == [(1, "a"), (1, "z"), (2, "b")]

        phase_one = await any_store.list_for_owner("u1", 1)
        assert [r.record_key for r in phase_one] == ["a", "z"]

    async def test_mark_complete(self, any_store):
        await any_store.upsert("u1", 1, "ws-a", {"x": 1})

        record = await any_store.mark_complete("u1", 1, "ws-a")

        assert record.completed is True
        assert record.completed_at is not None
        assert record.document == {"x": 1}

    async def test_mark_complete_missing_raises(self, any_store):
        with pytest.raises(RecordNotFoundError):
            await any_store.mark_complete("u1", 1, "missing")

    async def test_deletes(self, any_store):
        await any_store.upsert("u1", 1, "a", {})
        await any_store.upsert("u1", 1, "b", {})
        await any_store.upsert("u1", 2, "c", {})
        await any_store.upsert("u2", 1, "a", {})

        await any_store.delete("u1", 1, "a")
        await any_store.delete("u1", 1, "never-existed")
        assert [r.record_key for r in await any_store.list_for_owner("u1")] == ["b", "c"]

        assert await any_store.delete_group("u1", 1) == 1
        assert await any_store.delete_owner("u1") == 1
        assert await any_store.list_for_owner("u1") == []
        assert len(await any_store.list_for_owner("u2")) == 1

    async def test_list_owners(self, any_store):
        await any_store.upsert("bob", 1, "a", {})
        await any_store.upsert("alice", 1, "a", {})
        await any_store.upsert("alice", 2, "b", {})

        assert await any_store.list_owners() == ["alice", "bob"]


class TestInMemoryRecordStore:

    async def test_returned_records_are_copies(self):
        store = InMemoryRecordStore()
        doc = {"nested": {"notes": "x"}}
        record = await store.upsert("u1", 1, "a", doc)

        doc["nested"]["notes"] = "mutated"
        record.document["nested"]["notes"] = "also mutated"

        assert (await store.get("u1", 1, "a")).document == {"nested": {"notes": "x"}}


class TestSQLiteRecordStore:

    def test_init_creates_table(self, tmp_path):
        db_path = str(tmp_path / "nested" / "worksheets.db")
        SQLiteRecordStore(db_path)

        assert health_check(db_path) is True

    async def test_document_is_stored_as_json_text(self, tmp_path):
        db_path = str(tmp_path / "worksheets.db")
        store = SQLiteRecordStore(db_path)
        await store.upsert("u1", 3, "ws", {"reflection": "enc:v1:abc", "n": 1})

        with get_db(db_path) as conn:
            row = conn.execute(
                "SELECT data FROM worksheet_progress WHERE user_id = ? AND phase_number = ? AND worksheet_id = ?",
                ("u1", 3, "ws"),
            ).fetchone()

        assert json.loads(row[0]) == {"reflection": "enc:v1:abc", "n": 1}

    async def test_unserializable_document_raises_store_error(self, tmp_path):
        store = SQLiteRecordStore(str(tmp_path / "worksheets.db"))

        with pytest.raises(StoreError):
            await store.upsert("u1", 1, "ws", {"when": object()})

    async def test_corrupt_row_raises_store_error(self, tmp_path):
        db_path = str(tmp_path / "worksheets.db")
        store = SQLiteRecordStore(db_path)
        await store.upsert("u1", 1, "ws", {})
        with get_db(db_path) as conn:
            conn.execute("UPDATE worksheet_progress SET data = 'not json'")
            conn.commit()

        with pytest.raises(StoreError):
            await store.get("u1", 1, "ws")

    def test_unreachable_database_is_unhealthy(self, tmp_path):
        assert health_check(str(tmp_path)) is False


def test_create_record_store_memory_backend():
    assert isinstance(create_record_store("memory"), InMemoryRecordStore)
