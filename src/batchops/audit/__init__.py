"""Audit and security event emission."""

from batchops.audit.event_bus import (
    AuditCategory,
    AuditEmitter,
    AuditEvent,
    AuditEventBus,
    AuditOutcome,
    user_event,
)

__all__ = [
    "AuditCategory",
    "AuditEmitter",
    "AuditEvent",
    "AuditEventBus",
    "AuditOutcome",
    "user_event",
]
