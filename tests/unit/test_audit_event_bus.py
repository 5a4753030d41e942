"""Tests for the audit event bus and fire-and-forget emitter.

Covers:
- Publish reaches every subscriber; a failing subscriber is isolated
- Store subscriber query order and trimming
- AuditEmitter schedules delivery and drain() waits for it
- emit() outside a running loop is logged, never raised
"""

from __future__ import annotations

import pytest

from batchops.audit.event_bus import (
    AuditEmitter,
    AuditEvent,
    AuditEventBus,
    StoreSubscriber,
    user_event,
)


class _Collector:
    def __init__(self) -> None:
        self.seen: list[AuditEvent] = []

    async def handle(self, event: AuditEvent) -> None:
        self.seen.append(event)


class _Broken:
    async def handle(self, event: AuditEvent) -> None:
        raise RuntimeError("subscriber crashed")


class TestAuditEventBus:
    @pytest.mark.asyncio
    async def test_publish_fans_out(self) -> None:
        bus = AuditEventBus()
        collector = _Collector()
        bus.subscribe(collector)

        await bus.publish(user_event("user.created", "u-1", email="a@b.io"))

        assert len(collector.seen) == 1
        assert collector.seen[0].resource == "user:u-1"
        assert collector.seen[0].metadata == {"email": "a@b.io"}
        assert bus.event_count == 1

    @pytest.mark.asyncio
    async def test_failing_subscriber_isolated(self) -> None:
        bus = AuditEventBus()
        collector = _Collector()
        bus.subscribe(_Broken())
        bus.subscribe(collector)

        await bus.publish(user_event("user.deleted", "u-1"))

        assert len(collector.seen) == 1

    @pytest.mark.asyncio
    async def test_query_most_recent_first(self) -> None:
        bus = AuditEventBus()
        await bus.publish(user_event("user.created", "u-1"))
        await bus.publish(user_event("user.updated", "u-1"))
        await bus.publish(user_event("user.created", "u-2"))

        created = bus.query_events(action="user.created")
        assert [e.resource for e in created] == ["user:u-2", "user:u-1"]
        assert len(bus.query_events(resource="user:u-1")) == 2

    @pytest.mark.asyncio
    async def test_store_subscriber_trims(self) -> None:
        store = StoreSubscriber(max_events=2)
        for i in range(3):
            await store.handle(user_event("user.created", f"u-{i}"))
        assert [e.resource for e in store.events] == ["user:u-1", "user:u-2"]


class TestAuditEmitter:
    @pytest.mark.asyncio
    async def test_emit_then_drain(self) -> None:
        bus = AuditEventBus()
        emitter = AuditEmitter(bus)

        emitter.emit(user_event("user.created", "u-1"))
        emitter.emit(user_event("user.created", "u-2"))
        assert emitter.pending == 2

        await emitter.drain()

        assert emitter.pending == 0
        assert bus.event_count == 2

    @pytest.mark.asyncio
    async def test_delivery_errors_are_swallowed(self) -> None:
        class _ExplodingBus(AuditEventBus):
            async def publish(self, event: AuditEvent) -> None:
                raise RuntimeError("bus unavailable")

        emitter = AuditEmitter(_ExplodingBus())
        emitter.emit(user_event("user.created", "u-1"))
        await emitter.drain()
        assert emitter.pending == 0

    def test_emit_without_loop_does_not_raise(self) -> None:
        bus = AuditEventBus()
        emitter = AuditEmitter(bus)
        emitter.emit(user_event("user.created", "u-1"))
        assert emitter.pending == 0
