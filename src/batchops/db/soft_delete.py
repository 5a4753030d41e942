"""Soft-delete record model and an in-memory store built on it.

Records are never removed: deletion sets ``deleted_at``. The in-memory
store mirrors ``UserRepository`` semantics and backs single-process
deployments and tests.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field


def _now() -> datetime:
    return datetime.now(UTC)


class SoftDeleteMixin(BaseModel):
    """Mixin that adds soft-delete fields to any Pydantic model."""

    deleted_at: datetime | None = None


class StoredUser(SoftDeleteMixin):
    """A user row held by ``SoftDeleteStore``."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    email: str
    name: str
    password_hash: str = ""
    is_active: bool = True
    last_login_at: datetime | None = None
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def to_record(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude={"password_hash"})


def soft_delete(item: SoftDeleteMixin, when: datetime | None = None) -> None:
    """Mark an item as soft-deleted."""
    item.deleted_at = when or _now()


def filter_deleted(items: list[Any], include_deleted: bool = False) -> list[Any]:
    """Filter items, optionally excluding soft-deleted ones."""
    if include_deleted:
        return list(items)
    return [item for item in items if getattr(item, "deleted_at", None) is None]


class SoftDeleteStore:
    """In-memory user store with soft-delete support.

    Implements the ``RecordStore`` contract. Key lookups include
    soft-deleted rows, as a unique index would.
    """

    _KEY_FIELDS = frozenset({"id", "email"})
    _PATCHABLE = frozenset({"email", "name", "is_active", "last_login_at"})

    def __init__(self) -> None:
        self._records: dict[str, StoredUser] = {}

    def _active(self, record_id: str) -> StoredUser | None:
        record = self._records.get(record_id)
        if record is None or record.is_deleted:
            return None
        return record

    def _check_key(self, field: str) -> None:
        if field not in self._KEY_FIELDS:
            raise ValueError(f"Unsupported key field: {field}")

    def _apply(self, record: StoredUser, patch: dict[str, Any]) -> None:
        unknown = set(patch) - self._PATCHABLE
        if unknown:
            raise ValueError(f"Unsupported patch field(s): {', '.join(sorted(unknown))}")
        if "email" in patch and any(
            r.email == patch["email"] and r.id != record.id for r in self._records.values()
        ):
            raise ValueError(f"unique constraint violated: email {patch['email']}")
        for field, value in patch.items():
            setattr(record, field, value)
        record.updated_at = _now()

    # ── RecordStore contract ────────────────────────────────────────

    async def exists_by_key(self, field: str, value: Any) -> bool:
        return await self.find_by_key(field, value) is not None

    async def find_by_key(self, field: str, value: Any) -> dict[str, Any] | None:
        self._check_key(field)
        for record in self._records.values():
            if getattr(record, field) == value:
                return record.to_record()
        return None

    async def bulk_insert(self, records: Sequence[dict[str, Any]]) -> list[dict[str, Any]]:
        staged = [StoredUser(**r) for r in records]
        emails = [s.email for s in staged]
        taken = {r.email for r in self._records.values()}
        if len(set(emails)) != len(emails) or taken.intersection(emails):
            raise ValueError("unique constraint violated: email")
        for s in staged:
            self._records[s.id] = s
        return [s.to_record() for s in staged]

    async def apply_updates(self, updates: Sequence[tuple[str, dict[str, Any]]]) -> list[str]:
        snapshot = {k: r.model_copy() for k, r in self._records.items()}
        touched: list[str] = []
        try:
            for record_id, patch in updates:
                record = self._active(record_id)
                if record is None:
                    continue
                self._apply(record, patch)
                touched.append(record_id)
        except Exception:
            self._records = snapshot
            raise
        return touched

    async def update_by_predicate(self, ids: Sequence[str], patch: dict[str, Any]) -> int:
        affected = 0
        for record_id in dict.fromkeys(ids):
            record = self._active(record_id)
            if record is None:
                continue
            self._apply(record, patch)
            affected += 1
        return affected

    async def soft_delete_many(self, ids: Sequence[str]) -> int:
        unique_ids = list(dict.fromkeys(ids))
        targets = [self._active(i) for i in unique_ids]
        if not unique_ids or any(t is None for t in targets):
            return 0
        now = _now()
        for record in targets:
            assert record is not None
            soft_delete(record, now)
            record.is_active = False
            record.updated_at = now
        return len(targets)

    async def fetch_by_ids(self, ids: Sequence[str]) -> list[dict[str, Any]]:
        found = [self._active(i) for i in dict.fromkeys(ids)]
        return [r.to_record() for r in found if r is not None]

    async def list_page(
        self,
        after: tuple[str, str] | None,
        limit: int,
        descending: bool,
    ) -> list[dict[str, Any]]:
        active = filter_deleted(list(self._records.values()))
        active.sort(key=lambda r: (r.created_at, r.id), reverse=descending)
        if after is not None:
            marker = (datetime.fromisoformat(after[0]), after[1])
            if descending:
                active = [r for r in active if (r.created_at, r.id) < marker]
            else:
                active = [r for r in active if (r.created_at, r.id) > marker]
        return [r.to_record() for r in active[:limit]]

    # ── Introspection ───────────────────────────────────────────────

    def get(self, record_id: str, include_deleted: bool = False) -> StoredUser | None:
        record = self._records.get(record_id)
        if record is None or (record.is_deleted and not include_deleted):
            return None
        return record

    @property
    def total_count(self) -> int:
        return len(self._records)

    @property
    def active_count(self) -> int:
        return sum(1 for r in self._records.values() if not r.is_deleted)

    @property
    def deleted_count(self) -> int:
        return sum(1 for r in self._records.values() if r.is_deleted)
