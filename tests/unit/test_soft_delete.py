"""Tests for the soft-delete model helpers and SoftDeleteStore.

Covers:
- soft_delete() / filter_deleted() helpers
- Unique email enforcement on insert and update
- apply_updates() is all-or-nothing
- soft_delete_many() is all-or-nothing
- Key lookups see soft-deleted rows, other reads do not
"""

from __future__ import annotations

import uuid

import pytest

from batchops.batch.ports import RecordStore
from batchops.db.soft_delete import SoftDeleteStore, StoredUser, filter_deleted, soft_delete


def _row(n: int) -> dict:
    return {"email": f"u{n}@example.com", "name": f"U{n}", "password_hash": "h"}


class TestHelpers:
    def test_soft_delete_sets_timestamp(self) -> None:
        user = StoredUser(email="a@b.io", name="A")
        assert not user.is_deleted
        soft_delete(user)
        assert user.is_deleted

    def test_filter_deleted(self) -> None:
        live = StoredUser(email="a@b.io", name="A")
        gone = StoredUser(email="b@b.io", name="B")
        soft_delete(gone)
        assert filter_deleted([live, gone]) == [live]
        assert filter_deleted([live, gone], include_deleted=True) == [live, gone]

    def test_record_hides_password_hash(self) -> None:
        record = StoredUser(email="a@b.io", name="A", password_hash="secret").to_record()
        assert "password_hash" not in record
        assert record["deleted_at"] is None


class TestSoftDeleteStore:
    def test_satisfies_record_store_protocol(self) -> None:
        assert isinstance(SoftDeleteStore(), RecordStore)

    @pytest.mark.asyncio
    async def test_bulk_insert_rejects_taken_email(self) -> None:
        store = SoftDeleteStore()
        await store.bulk_insert([_row(1)])
        with pytest.raises(ValueError, match="unique constraint"):
            await store.bulk_insert([_row(2), _row(1)])
        assert store.total_count == 1

    @pytest.mark.asyncio
    async def test_apply_updates_rolls_back_on_error(self) -> None:
        store = SoftDeleteStore()
        a, b = await store.bulk_insert([_row(1), _row(2)])

        with pytest.raises(ValueError):
            await store.apply_updates(
                [(a["id"], {"name": "Changed"}), (b["id"], {"email": "u1@example.com"})]
            )

        assert store.get(a["id"]).name == "U1"

    @pytest.mark.asyncio
    async def test_apply_updates_skips_missing(self) -> None:
        store = SoftDeleteStore()
        (a,) = await store.bulk_insert([_row(1)])
        touched = await store.apply_updates(
            [(a["id"], {"name": "New"}), (str(uuid.uuid4()), {"name": "Ghost"})]
        )
        assert touched == [a["id"]]

    @pytest.mark.asyncio
    async def test_soft_delete_many_all_or_nothing(self) -> None:
        store = SoftDeleteStore()
        a, b = await store.bulk_insert([_row(1), _row(2)])

        assert await store.soft_delete_many([a["id"], str(uuid.uuid4())]) == 0
        assert store.deleted_count == 0

        assert await store.soft_delete_many([a["id"], b["id"]]) == 2
        assert store.deleted_count == 2
        assert store.get(a["id"], include_deleted=True).is_active is False

    @pytest.mark.asyncio
    async def test_soft_delete_twice_affects_nothing(self) -> None:
        store = SoftDeleteStore()
        (a,) = await store.bulk_insert([_row(1)])
        assert await store.soft_delete_many([a["id"]]) == 1
        assert await store.soft_delete_many([a["id"]]) == 0

    @pytest.mark.asyncio
    async def test_key_lookup_includes_deleted(self) -> None:
        store = SoftDeleteStore()
        (a,) = await store.bulk_insert([_row(1)])
        await store.soft_delete_many([a["id"]])

        assert await store.exists_by_key("email", "u1@example.com") is True
        assert await store.fetch_by_ids([a["id"]]) == []

    @pytest.mark.asyncio
    async def test_unsupported_key_field(self) -> None:
        with pytest.raises(ValueError, match="Unsupported key field"):
            await SoftDeleteStore().find_by_key("name", "x")

    @pytest.mark.asyncio
    async def test_update_by_predicate_counts_active(self) -> None:
        store = SoftDeleteStore()
        a, b = await store.bulk_insert([_row(1), _row(2)])
        await store.soft_delete_many([b["id"]])
        affected = await store.update_by_predicate([a["id"], b["id"]], {"is_active": False})
        assert affected == 1
