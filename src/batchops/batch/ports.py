"""Collaborator contracts consumed by the batch engine."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any, Protocol, runtime_checkable

from batchops.audit.event_bus import AuditEvent

Record = dict[str, Any]


@runtime_checkable
class RecordStore(Protocol):
    """Persistent store for records addressed by id.

    Key lookups (``exists_by_key``, ``find_by_key``) see soft-deleted
    records, since uniqueness spans them. Every other read sees active
    records only.
    """

    async def exists_by_key(self, field: str, value: Any) -> bool: ...

    async def find_by_key(self, field: str, value: Any) -> Record | None: ...

    async def bulk_insert(self, records: Sequence[Record]) -> list[Record]: ...

    async def apply_updates(self, updates: Sequence[tuple[str, Record]]) -> list[str]:
        """Apply per-id patches in one transaction; return the ids touched."""
        ...

    async def update_by_predicate(self, ids: Sequence[str], patch: Record) -> int:
        """Apply one patch to every active id in *ids*; return rows affected."""
        ...

    async def soft_delete_many(self, ids: Sequence[str]) -> int:
        """Soft-delete *ids* all-or-nothing.

        Returns ``len(ids)`` when every id was active and is now deleted,
        ``0`` when any id was missing (in which case nothing changes).
        """
        ...

    async def fetch_by_ids(self, ids: Sequence[str]) -> list[Record]: ...

    async def list_page(
        self,
        after: tuple[str, str] | None,
        limit: int,
        descending: bool,
    ) -> list[Record]: ...


@runtime_checkable
class RecordCache(Protocol):
    """Cache keyed by record id. Callers treat every failure as non-fatal."""

    async def get_many(self, ids: Sequence[str]) -> dict[str, Record]: ...

    async def set_many(self, records: Sequence[Record]) -> None: ...

    async def invalidate(self, record_id: str) -> None: ...

    async def get_stats(self) -> dict[str, Any]: ...

    async def clear(self) -> int: ...


@runtime_checkable
class EventEmitter(Protocol):
    """Fire-and-forget side-effect sink."""

    def emit(self, event: AuditEvent) -> None: ...
