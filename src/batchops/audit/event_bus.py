"""Audit event bus and the fire-and-forget emitter used by batch operations.

Subscribers are awaited one after another; a failing subscriber is logged
and never affects its siblings or the publisher.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, Protocol, runtime_checkable
from uuid import uuid4

import structlog
from pydantic import BaseModel, Field

logger = structlog.get_logger()


class AuditCategory(StrEnum):
    USER_LIFECYCLE = "user_lifecycle"
    SECURITY = "security"
    DATA_ACCESS = "data_access"
    MAINTENANCE = "maintenance"


class AuditOutcome(StrEnum):
    SUCCESS = "success"
    FAILURE = "failure"
    DENIED = "denied"
    ERROR = "error"


class AuditEvent(BaseModel):
    """A structured audit event."""

    id: str = Field(default_factory=lambda: f"evt-{uuid4().hex[:12]}")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    actor: str = "system"
    action: str
    resource: str = ""
    category: AuditCategory = AuditCategory.USER_LIFECYCLE
    outcome: AuditOutcome = AuditOutcome.SUCCESS
    metadata: dict[str, Any] = Field(default_factory=dict)
    correlation_id: str = ""


def user_event(action: str, record_id: str, **metadata: Any) -> AuditEvent:
    """Build a lifecycle event for a single user record."""
    return AuditEvent(
        action=action,
        resource=f"user:{record_id}",
        category=AuditCategory.USER_LIFECYCLE,
        metadata=metadata,
    )


@runtime_checkable
class AuditSubscriber(Protocol):
    """Protocol for audit event handlers."""

    async def handle(self, event: AuditEvent) -> None: ...


class LogSubscriber:
    """Writes audit events to structlog."""

    async def handle(self, event: AuditEvent) -> None:
        logger.info(
            "audit_event",
            event_id=event.id,
            actor=event.actor,
            action=event.action,
            resource=event.resource,
            category=event.category,
            outcome=event.outcome,
        )


class StoreSubscriber:
    """Keeps the most recent audit events in memory for querying."""

    def __init__(self, max_events: int = 50_000) -> None:
        self._events: list[AuditEvent] = []
        self._max_events = max_events

    async def handle(self, event: AuditEvent) -> None:
        self._events.append(event)
        if len(self._events) > self._max_events:
            self._events[:] = self._events[-self._max_events :]

    @property
    def events(self) -> list[AuditEvent]:
        return list(self._events)

    def query(
        self,
        action: str | None = None,
        resource: str | None = None,
        limit: int = 50,
    ) -> list[AuditEvent]:
        results = self._events
        if action:
            results = [e for e in results if e.action == action]
        if resource:
            results = [e for e in results if e.resource == resource]
        # Most recent first
        return list(reversed(results))[:limit]


class AuditEventBus:
    """Centralized publish/subscribe for audit events.

    Usage::

        bus = AuditEventBus()
        bus.subscribe(SecurityServiceSubscriber(...))
        await bus.publish(user_event("user.created", user_id))
    """

    def __init__(self) -> None:
        self._store = StoreSubscriber()
        self._subscribers: list[AuditSubscriber] = [self._store, LogSubscriber()]

    def subscribe(self, subscriber: AuditSubscriber) -> None:
        self._subscribers.append(subscriber)

    async def publish(self, event: AuditEvent) -> None:
        """Publish an event to all subscribers."""
        for sub in self._subscribers:
            try:
                await sub.handle(event)
            except Exception as e:
                logger.warning(
                    "audit_subscriber_error",
                    subscriber=type(sub).__name__,
                    event_id=event.id,
                    error=str(e),
                )

    def query_events(
        self, action: str | None = None, resource: str | None = None, limit: int = 50
    ) -> list[AuditEvent]:
        return self._store.query(action=action, resource=resource, limit=limit)

    @property
    def event_count(self) -> int:
        return len(self._store.events)


class AuditEmitter:
    """Schedules bus publication on background tasks.

    ``emit`` returns immediately. Delivery errors are logged, never raised
    to the caller. ``drain`` waits for everything still in flight.
    """

    def __init__(self, bus: AuditEventBus) -> None:
        self._bus = bus
        self._pending: set[asyncio.Task[None]] = set()

    def emit(self, event: AuditEvent) -> None:
        try:
            task = asyncio.get_running_loop().create_task(self._deliver(event))
        except RuntimeError as exc:
            logger.warning("audit_emit_no_loop", event_id=event.id, error=str(exc))
            return
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _deliver(self, event: AuditEvent) -> None:
        try:
            await self._bus.publish(event)
        except Exception as exc:
            logger.warning(
                "audit_emit_failed",
                event_id=event.id,
                action=event.action,
                error=str(exc),
            )

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def drain(self) -> None:
        """Wait for all scheduled deliveries to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
