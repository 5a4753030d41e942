"""Batch user operation API endpoints.

Every list endpoint reports per-item outcomes: a partially failed batch is
still a ``200`` with ``success: false``. Only malformed requests and a
missing engine produce RFC 7807 errors.
"""

from datetime import UTC, datetime
from typing import Any

import structlog
from fastapi import APIRouter, Query
from pydantic import BaseModel, ConfigDict, Field

from batchops.api.exceptions import ServiceUnavailableError, ValidationError
from batchops.batch.engine import BatchOperationEngine
from batchops.batch.models import (
    BatchOperationResult,
    BatchProcessingOptions,
    LookupResult,
)
from batchops.batch.pagination import DEFAULT_LIMIT
from batchops.config import settings

logger = structlog.get_logger()

router = APIRouter(prefix="/batch")

_engine: BatchOperationEngine | None = None

SENSITIVE_FIELDS = frozenset({"password", "password_hash"})


def set_engine(engine: BatchOperationEngine | None) -> None:
    """Inject the batch engine at startup."""
    global _engine  # noqa: PLW0603
    _engine = engine


def _get_engine() -> BatchOperationEngine:
    if _engine is None:
        raise ServiceUnavailableError("Batch engine not initialized")
    return _engine


# ── Request models ───────────────────────────────────────────────────


class CreateUsersRequest(BaseModel):
    items: list[Any] = Field(default_factory=list)
    options: BatchProcessingOptions | None = None


class LookupUsersRequest(BaseModel):
    ids: list[Any] = Field(default_factory=list)
    options: BatchProcessingOptions | None = None


class UpdateUsersRequest(BaseModel):
    updates: list[Any] = Field(default_factory=list)
    options: BatchProcessingOptions | None = None


class UserIdsRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_ids: list[Any] = Field(default_factory=list, alias="userIds")
    options: BatchProcessingOptions | None = None


# ── Response shaping ─────────────────────────────────────────────────


def _sanitize(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: v for k, v in value.items() if k not in SENSITIVE_FIELDS}
    return value


def _empty_response(message: str) -> dict[str, Any]:
    return {
        "success": False,
        "message": message,
        "data": [],
        "failed": [],
        "stats": {"total": 0, "successful": 0, "failed": 0},
    }


def _batch_response(result: BatchOperationResult, action: str) -> dict[str, Any]:
    stats = result.stats
    return {
        "success": stats.failed == 0,
        "message": (
            f"Batch {action} completed: {stats.successful} succeeded, {stats.failed} failed"
        ),
        "data": [_sanitize(item) for item in result.successful],
        "failed": [
            {"item": _sanitize(f.item), "error": f.error} for f in result.failed
        ],
        "stats": stats.model_dump(),
    }


def _lookup_response(result: LookupResult) -> dict[str, Any]:
    return {
        "success": True,
        "message": f"Found {result.found} of {result.requested} users",
        "data": [_sanitize(r) for r in result.records.values()],
        "stats": {
            "requested": result.requested,
            "found": result.found,
            "missing": result.missing,
        },
    }


def _zero_lookup_stats() -> dict[str, int]:
    return {"requested": 0, "found": 0, "missing": 0}


def _timestamp() -> str:
    return datetime.now(UTC).isoformat()


# ── Users ────────────────────────────────────────────────────────────


@router.post("/users/create")
async def create_users(body: CreateUsersRequest) -> dict[str, Any]:
    """Create users in bulk."""
    if not body.items:
        return _empty_response("No users provided")
    result = await _get_engine().create(body.items, body.options)
    return _batch_response(result, "create")


@router.get("/users/lookup")
async def lookup_users(
    ids: str = Query(default="", description="Comma-separated user ids"),
    chunk_size: int | None = Query(
        default=None, ge=1, le=settings.batch_max_chunk_size, alias="chunkSize"
    ),
) -> dict[str, Any]:
    """Look up users by a comma-separated id list."""
    id_list = [i.strip() for i in ids.split(",") if i.strip()]
    if not id_list:
        return {**_empty_response("No user ids provided"), "stats": _zero_lookup_stats()}
    if len(id_list) > settings.batch_lookup_query_max_ids:
        raise ValidationError(
            f"At most {settings.batch_lookup_query_max_ids} ids may be passed in the query;"
            " use POST /batch/users/lookup for larger sets",
            extra={"received": len(id_list)},
        )
    options = BatchProcessingOptions(chunk_size=chunk_size) if chunk_size else None
    result = await _get_engine().lookup(id_list, options)
    return _lookup_response(result)


@router.post("/users/lookup")
async def lookup_users_body(body: LookupUsersRequest) -> dict[str, Any]:
    """Look up users by an id list in the request body."""
    if not body.ids:
        return {**_empty_response("No user ids provided"), "stats": _zero_lookup_stats()}
    result = await _get_engine().lookup(body.ids, body.options)
    return _lookup_response(result)


@router.patch("/users/update")
async def update_users(body: UpdateUsersRequest) -> dict[str, Any]:
    """Apply partial updates to users in bulk."""
    if not body.updates:
        return _empty_response("No updates provided")
    result = await _get_engine().update(body.updates, body.options)
    return _batch_response(result, "update")


@router.delete("/users/soft-delete")
async def soft_delete_users(body: UserIdsRequest) -> dict[str, Any]:
    """Soft-delete users in bulk."""
    if not body.user_ids:
        return _empty_response("No user ids provided")
    result = await _get_engine().soft_delete(body.user_ids, body.options)
    return _batch_response(result, "soft-delete")


@router.patch("/users/last-login")
async def update_last_login(body: UserIdsRequest) -> dict[str, Any]:
    """Stamp the last-login time on users in bulk."""
    if not body.user_ids:
        return _empty_response("No user ids provided")
    result = await _get_engine().update_last_login(body.user_ids, body.options)
    return _batch_response(result, "last-login")


@router.get("/users")
async def list_users(
    cursor: str | None = Query(default=None),
    limit: int = Query(default=DEFAULT_LIMIT, ge=1),
    sort_order: str = Query(default="desc", alias="sortOrder", pattern="^(asc|desc)$"),
) -> dict[str, Any]:
    """Cursor-paginated listing of active users."""
    limit = min(limit, settings.batch_page_max_limit)
    try:
        page = await _get_engine().list_page(cursor, limit, descending=sort_order == "desc")
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc
    return {
        "items": [_sanitize(r) for r in page.items],
        "next_cursor": page.next_cursor,
        "has_more": page.has_more,
    }


# ── Cache ────────────────────────────────────────────────────────────


@router.get("/cache/stats")
async def cache_stats() -> dict[str, Any]:
    stats = await _get_engine().cache_stats()
    return {"success": True, "data": stats, "timestamp": _timestamp()}


@router.post("/cache/warm-up")
async def warm_up_cache(body: UserIdsRequest) -> dict[str, Any]:
    """Preload users into the cache."""
    if not body.user_ids:
        return {"success": False, "message": "No user ids provided", "cached": 0}
    cached = await _get_engine().warm_up_cache(body.user_ids, body.options)
    return {
        "success": True,
        "message": f"Cached {cached} of {len(body.user_ids)} users",
        "cached": cached,
    }


@router.post("/cache/clear")
async def clear_cache() -> dict[str, Any]:
    deleted = await _get_engine().clear_cache()
    logger.info("batch_cache_cleared", deleted=deleted)
    return {
        "success": True,
        "message": f"Cleared {deleted} cache entries",
        "deleted": deleted,
        "timestamp": _timestamp(),
    }
