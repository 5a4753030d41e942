"""Root conftest: in-memory collaborators for engine and API tests."""

from __future__ import annotations

import pytest

from batchops.audit.event_bus import AuditEvent
from batchops.batch.engine import BatchOperationEngine
from batchops.cache.memory_cache import InMemoryCache
from batchops.db.soft_delete import SoftDeleteStore


def _fake_hasher(password: str) -> str:
    """Stand-in for bcrypt so tests stay fast."""
    return f"hashed:{password}"


class RecordingEmitter:
    """Collects emitted events synchronously."""

    def __init__(self) -> None:
        self.events: list[AuditEvent] = []

    def emit(self, event: AuditEvent) -> None:
        self.events.append(event)

    def actions(self) -> list[str]:
        return [e.action for e in self.events]


@pytest.fixture
def store() -> SoftDeleteStore:
    return SoftDeleteStore()


@pytest.fixture
def cache() -> InMemoryCache:
    return InMemoryCache()


@pytest.fixture
def emitter() -> RecordingEmitter:
    return RecordingEmitter()


@pytest.fixture
def engine(
    store: SoftDeleteStore, cache: InMemoryCache, emitter: RecordingEmitter
) -> BatchOperationEngine:
    return BatchOperationEngine(
        store=store,
        cache=cache,
        emitter=emitter,
        password_hasher=_fake_hasher,
    )
