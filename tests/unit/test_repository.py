"""Tests for UserRepository against an in-memory SQLite database.

Covers:
- bulk_insert() returns records without credential hashes
- Unique email violations roll back the whole insert
- apply_updates() touches active rows only
- soft_delete_many() is all-or-nothing
- fetch_by_ids() hides soft-deleted rows, key lookups do not
- Keyset pagination over (created_at, id)
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

import pytest
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from batchops.db.models import Base
from batchops.db.repository import UserRepository


async def _make_repo() -> tuple[UserRepository, AsyncEngine]:
    engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    return UserRepository(async_sessionmaker(engine, expire_on_commit=False)), engine


def _row(n: int) -> dict:
    return {"email": f"u{n}@example.com", "name": f"U{n}", "password_hash": "h", "is_active": True}


class TestUserRepository:
    @pytest.mark.asyncio
    async def test_bulk_insert(self) -> None:
        repo, engine = await _make_repo()
        try:
            records = await repo.bulk_insert([_row(1), _row(2)])
            assert [r["email"] for r in records] == ["u1@example.com", "u2@example.com"]
            assert all("password_hash" not in r for r in records)
            assert all(r["id"] and r["created_at"] for r in records)
        finally:
            await engine.dispose()

    @pytest.mark.asyncio
    async def test_bulk_insert_is_atomic(self) -> None:
        repo, engine = await _make_repo()
        try:
            await repo.bulk_insert([_row(1)])
            with pytest.raises(IntegrityError):
                await repo.bulk_insert([_row(2), _row(1)])
            assert await repo.exists_by_key("email", "u2@example.com") is False
        finally:
            await engine.dispose()

    @pytest.mark.asyncio
    async def test_apply_updates(self) -> None:
        repo, engine = await _make_repo()
        try:
            a, b = await repo.bulk_insert([_row(1), _row(2)])
            await repo.soft_delete_many([b["id"]])

            touched = await repo.apply_updates(
                [(a["id"], {"name": "Renamed"}), (b["id"], {"name": "Zombie"})]
            )

            assert touched == [a["id"]]
            (fresh,) = await repo.fetch_by_ids([a["id"]])
            assert fresh["name"] == "Renamed"
        finally:
            await engine.dispose()

    @pytest.mark.asyncio
    async def test_apply_updates_rejects_unknown_fields(self) -> None:
        repo, engine = await _make_repo()
        try:
            (a,) = await repo.bulk_insert([_row(1)])
            with pytest.raises(ValueError, match="Unsupported patch field"):
                await repo.apply_updates([(a["id"], {"password_hash": "x"})])
        finally:
            await engine.dispose()

    @pytest.mark.asyncio
    async def test_soft_delete_many_all_or_nothing(self) -> None:
        repo, engine = await _make_repo()
        try:
            a, b = await repo.bulk_insert([_row(1), _row(2)])

            assert await repo.soft_delete_many([a["id"], str(uuid.uuid4())]) == 0
            assert len(await repo.fetch_by_ids([a["id"], b["id"]])) == 2

            assert await repo.soft_delete_many([a["id"], b["id"]]) == 2
            assert await repo.fetch_by_ids([a["id"], b["id"]]) == []
            deleted = await repo.find_by_key("id", a["id"])
            assert deleted is not None
            assert deleted["deleted_at"] is not None
            assert deleted["is_active"] is False
        finally:
            await engine.dispose()

    @pytest.mark.asyncio
    async def test_update_by_predicate(self) -> None:
        repo, engine = await _make_repo()
        try:
            a, b = await repo.bulk_insert([_row(1), _row(2)])
            await repo.soft_delete_many([b["id"]])
            now = datetime.now(UTC)

            affected = await repo.update_by_predicate([a["id"], b["id"]], {"last_login_at": now})

            assert affected == 1
            (fresh,) = await repo.fetch_by_ids([a["id"]])
            assert fresh["last_login_at"] is not None
        finally:
            await engine.dispose()

    @pytest.mark.asyncio
    async def test_find_by_key(self) -> None:
        repo, engine = await _make_repo()
        try:
            (a,) = await repo.bulk_insert([_row(1)])
            found = await repo.find_by_key("email", "u1@example.com")
            assert found is not None
            assert found["id"] == a["id"]
            assert await repo.find_by_key("email", "nobody@example.com") is None
            with pytest.raises(ValueError):
                await repo.find_by_key("name", "U1")
        finally:
            await engine.dispose()

    @pytest.mark.asyncio
    async def test_list_page_keyset(self) -> None:
        repo, engine = await _make_repo()
        try:
            inserted = await repo.bulk_insert([_row(i) for i in range(5)])

            first = await repo.list_page(None, 3, descending=False)
            last = first[-1]
            rest = await repo.list_page((last["created_at"], last["id"]), 3, descending=False)

            ids = [r["id"] for r in first + rest]
            assert len(first) == 3
            assert len(rest) == 2
            assert sorted(ids) == sorted(r["id"] for r in inserted)
        finally:
            await engine.dispose()
