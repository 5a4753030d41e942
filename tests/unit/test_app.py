"""Tests for the application factory and lifespan wiring.

Covers:
- /health endpoint
- Lifespan falls back to the in-memory store when the database is unreachable
- Batch routes are served under the API prefix once the engine is wired
- Shutdown unwires the engine
"""

from __future__ import annotations

from collections.abc import Iterator

import pytest
import structlog
from fastapi.testclient import TestClient

from batchops.api.app import create_app
from batchops.api.routes import batch as batch_routes
from batchops.config import settings
from batchops.db.soft_delete import SoftDeleteStore


@pytest.fixture
def offline_settings(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    monkeypatch.setattr(settings, "database_url", "nosuchdriver://nowhere/db")
    monkeypatch.setattr(settings, "cache_enabled", False)
    monkeypatch.setattr(settings, "password_hash_rounds", 4)
    yield
    structlog.reset_defaults()


class TestCreateApp:
    def test_health(self) -> None:
        client = TestClient(create_app())
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "healthy"

    def test_lifespan_wires_in_memory_fallback(self, offline_settings: None) -> None:
        app = create_app()
        with TestClient(app) as client:
            assert isinstance(app.state.store, SoftDeleteStore)
            resp = client.post(
                f"{settings.api_prefix}/batch/users/create",
                json={
                    "items": [
                        {"name": "Ada", "email": "ada@example.com", "password": "long-enough"}
                    ]
                },
            )
            assert resp.status_code == 200
            assert resp.json()["stats"]["successful"] == 1

            stats = client.get(f"{settings.api_prefix}/batch/cache/stats").json()
            assert stats["data"] == {"enabled": False}

        assert batch_routes._engine is None
        events = app.state.audit_bus.query_events(action="user.created")
        assert len(events) == 1
