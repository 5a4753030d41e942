"""Repository layer: bulk user persistence on SQLAlchemy async ORM."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any

import structlog
from sqlalchemy import and_, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from batchops.db.models import UserRecord

logger = structlog.get_logger()

_KEY_COLUMNS = {
    "id": UserRecord.id,
    "email": UserRecord.email,
}
_INSERTABLE = ("id", "email", "name", "password_hash", "is_active")
_PATCHABLE = frozenset({"email", "name", "is_active", "last_login_at"})


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


class UserRepository:
    """Bulk persistence for users.

    Key lookups (``exists_by_key``, ``find_by_key``) include soft-deleted
    rows because the unique constraint spans them; every other read only
    sees active rows.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._sf = session_factory

    @staticmethod
    def _key_column(field: str) -> Any:
        try:
            return _KEY_COLUMNS[field]
        except KeyError:
            raise ValueError(f"Unsupported key field: {field}") from None

    @staticmethod
    def _patch_values(patch: dict[str, Any]) -> dict[str, Any]:
        unknown = set(patch) - _PATCHABLE
        if unknown:
            raise ValueError(f"Unsupported patch field(s): {', '.join(sorted(unknown))}")
        return {**patch, "updated_at": datetime.now(UTC)}

    # ── Key lookups ─────────────────────────────────────────────────

    async def exists_by_key(self, field: str, value: Any) -> bool:
        async with self._sf() as session:
            stmt = select(UserRecord.id).where(self._key_column(field) == value).limit(1)
            result = await session.execute(stmt)
            return result.scalar_one_or_none() is not None

    async def find_by_key(self, field: str, value: Any) -> dict | None:
        async with self._sf() as session:
            stmt = select(UserRecord).where(self._key_column(field) == value).limit(1)
            result = await session.execute(stmt)
            record = result.scalar_one_or_none()
            if record is None:
                return None
            return self._user_to_dict(record)

    # ── Bulk writes ─────────────────────────────────────────────────

    async def bulk_insert(self, records: Sequence[dict[str, Any]]) -> list[dict]:
        """Insert *records* in one transaction; all or none are stored."""
        async with self._sf() as session:
            rows = [
                UserRecord(
                    **{k: r[k] for k in _INSERTABLE if k in r},
                    last_login_at=None,
                    deleted_at=None,
                )
                for r in records
            ]
            session.add_all(rows)
            await session.commit()
            logger.debug("users_inserted", count=len(rows))
            return [self._user_to_dict(r) for r in rows]

    async def apply_updates(self, updates: Sequence[tuple[str, dict[str, Any]]]) -> list[str]:
        """Apply per-id patches in one transaction. Returns the ids touched."""
        touched: list[str] = []
        async with self._sf() as session:
            for user_id, patch in updates:
                stmt = (
                    update(UserRecord)
                    .where(UserRecord.id == user_id, UserRecord.deleted_at.is_(None))
                    .values(**self._patch_values(patch))
                )
                result = await session.execute(stmt)
                if result.rowcount:
                    touched.append(user_id)
            await session.commit()
        logger.debug("users_updated", requested=len(updates), touched=len(touched))
        return touched

    async def update_by_predicate(self, ids: Sequence[str], patch: dict[str, Any]) -> int:
        """Apply one patch to every active user in *ids*."""
        if not ids:
            return 0
        async with self._sf() as session:
            stmt = (
                update(UserRecord)
                .where(UserRecord.id.in_(list(ids)), UserRecord.deleted_at.is_(None))
                .values(**self._patch_values(patch))
            )
            result = await session.execute(stmt)
            await session.commit()
            return result.rowcount or 0

    async def soft_delete_many(self, ids: Sequence[str]) -> int:
        """Soft-delete *ids* all-or-nothing.

        Rolls back and returns 0 if any id is missing or already deleted.
        """
        unique_ids = list(dict.fromkeys(ids))
        if not unique_ids:
            return 0
        now = datetime.now(UTC)
        async with self._sf() as session:
            stmt = (
                update(UserRecord)
                .where(UserRecord.id.in_(unique_ids), UserRecord.deleted_at.is_(None))
                .values(deleted_at=now, is_active=False, updated_at=now)
            )
            result = await session.execute(stmt)
            affected = result.rowcount or 0
            if affected != len(unique_ids):
                await session.rollback()
                logger.debug(
                    "users_soft_delete_rejected",
                    requested=len(unique_ids),
                    matched=affected,
                )
                return 0
            await session.commit()
            return affected

    # ── Reads ───────────────────────────────────────────────────────

    async def fetch_by_ids(self, ids: Sequence[str]) -> list[dict]:
        if not ids:
            return []
        async with self._sf() as session:
            stmt = select(UserRecord).where(
                UserRecord.id.in_(list(ids)), UserRecord.deleted_at.is_(None)
            )
            result = await session.execute(stmt)
            return [self._user_to_dict(r) for r in result.scalars().all()]

    async def list_page(
        self,
        after: tuple[str, str] | None,
        limit: int,
        descending: bool,
    ) -> list[dict]:
        """Keyset page of active users ordered by ``(created_at, id)``."""
        async with self._sf() as session:
            stmt = select(UserRecord).where(UserRecord.deleted_at.is_(None))
            if after is not None:
                created_at = datetime.fromisoformat(after[0])
                last_id = after[1]
                if descending:
                    stmt = stmt.where(
                        or_(
                            UserRecord.created_at < created_at,
                            and_(UserRecord.created_at == created_at, UserRecord.id < last_id),
                        )
                    )
                else:
                    stmt = stmt.where(
                        or_(
                            UserRecord.created_at > created_at,
                            and_(UserRecord.created_at == created_at, UserRecord.id > last_id),
                        )
                    )
            if descending:
                stmt = stmt.order_by(UserRecord.created_at.desc(), UserRecord.id.desc())
            else:
                stmt = stmt.order_by(UserRecord.created_at.asc(), UserRecord.id.asc())
            result = await session.execute(stmt.limit(limit))
            return [self._user_to_dict(r) for r in result.scalars().all()]

    @staticmethod
    def _user_to_dict(record: UserRecord) -> dict:
        return {
            "id": record.id,
            "email": record.email,
            "name": record.name,
            "is_active": record.is_active,
            "last_login_at": _iso(record.last_login_at),
            "created_at": _iso(record.created_at),
            "updated_at": _iso(record.updated_at),
            "deleted_at": _iso(record.deleted_at),
        }
