"""Batch operation engine for user records.

Runs create / lookup / update / soft-delete (plus last-login touch and
cache warm-up) over large inputs in bounded chunks. Partial failure is the
normal outcome: per-item problems are reported in the result, and store
errors are confined to the chunk that raised them unless the caller asked
for ``FailurePolicy.ABORT_ALL``. Cache and event-emission failures are
logged and never affect the result.

No public operation raises for store, cache or emitter errors.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

import structlog

from batchops.audit.event_bus import AuditCategory, AuditEvent, AuditOutcome, user_event
from batchops.batch.chunking import process_in_chunks, split
from batchops.batch.models import (
    ALREADY_EXISTS,
    NOT_FOUND,
    PROCESSING_STOPPED,
    BatchOperation,
    BatchOperationResult,
    BatchProcessingOptions,
    BatchUpdate,
    FailurePolicy,
    LookupResult,
)
from batchops.batch.pagination import DEFAULT_LIMIT, Page, clamp_limit, encode_cursor, parse_cursor
from batchops.batch.ports import EventEmitter, Record, RecordCache, RecordStore
from batchops.batch.validation import (
    CREDENTIAL_POLICY_ERROR,
    Validator,
    is_valid_id,
    normalize_email,
    validate_id,
    validate_user_create,
    validate_user_update,
)
from batchops.credentials import PasswordHasher, hash_password

logger = structlog.get_logger()

DUPLICATE_EMAIL = "conflict: duplicate email in batch"
DUPLICATE_ID = "conflict: duplicate id in batch"
EMAIL_IN_USE = "conflict: email already in use"


@dataclass
class _Candidate:
    """One input item after the pre-I/O pass."""

    item: Any
    error: str | None = None
    key: str = ""
    payload: dict[str, Any] = field(default_factory=dict)


ChunkHandler = Callable[
    [list[_Candidate], FailurePolicy], Awaitable[tuple[BatchOperationResult, bool]]
]


def _stopped_message(error: Exception | str) -> str:
    return f"{PROCESSING_STOPPED}: {error}"


class BatchOperationEngine:
    """Chunked batch processor over a record store, cache and event emitter.

    Parameters
    ----------
    store:
        Persistent store adapter.
    cache:
        Optional record cache. ``None`` disables caching entirely.
    emitter:
        Optional fire-and-forget audit emitter.
    password_hasher:
        Hashes the initial password of created users.
    create_validator / update_validator:
        Pure per-item validators run before any I/O.
    """

    def __init__(
        self,
        store: RecordStore,
        cache: RecordCache | None = None,
        emitter: EventEmitter | None = None,
        password_hasher: PasswordHasher = hash_password,
        create_validator: Validator = validate_user_create,
        update_validator: Validator = validate_user_update,
        default_options: BatchProcessingOptions | None = None,
    ) -> None:
        self._store = store
        self._cache = cache
        self._emitter = emitter
        self._hash_password = password_hasher
        self._validate_create = create_validator
        self._validate_update = update_validator
        self._default_options = default_options or BatchProcessingOptions()

    def _options(self, options: BatchProcessingOptions | None) -> BatchProcessingOptions:
        return options if options is not None else self._default_options

    # ── Chunk runner ─────────────────────────────────────────────

    async def _run_chunks(
        self,
        operation: BatchOperation,
        candidates: list[_Candidate],
        options: BatchProcessingOptions,
        handler: ChunkHandler,
    ) -> BatchOperationResult:
        """Process *candidates* chunk by chunk and merge results in chunk order.

        At most ``options.max_concurrency`` chunks run at once. Under
        ``ABORT_ALL`` a failed chunk stops every chunk not yet started.
        """
        result = BatchOperationResult.empty(total=len(candidates))
        chunks = split(candidates, options.chunk_size)
        policy = options.effective_policy
        semaphore = asyncio.Semaphore(options.max_concurrency)
        stopped = False

        async def _bounded(index: int, chunk: list[_Candidate]) -> BatchOperationResult:
            nonlocal stopped
            async with semaphore:
                if stopped:
                    skipped = BatchOperationResult()
                    for c in chunk:
                        skipped.add_failure(c.item, PROCESSING_STOPPED)
                    return skipped
                try:
                    chunk_result, chunk_failed = await handler(chunk, policy)
                except Exception as exc:
                    logger.error(
                        "batch_chunk_crashed",
                        operation=operation,
                        chunk_index=index,
                        error=str(exc),
                    )
                    chunk_result, chunk_failed = self._fail_chunk(chunk, exc, policy), True
                if chunk_failed and policy is FailurePolicy.ABORT_ALL:
                    stopped = True
                logger.debug(
                    "batch_chunk_processed",
                    operation=operation,
                    chunk_index=index,
                    size=len(chunk),
                    successful=chunk_result.stats.successful,
                    failed=chunk_result.stats.failed,
                )
                return chunk_result

        chunk_results = await asyncio.gather(*(_bounded(i, c) for i, c in enumerate(chunks)))
        for chunk_result in chunk_results:
            result.merge(chunk_result)
        return result

    @staticmethod
    def _fail_chunk(
        pending: Sequence[_Candidate], error: Exception, policy: FailurePolicy
    ) -> BatchOperationResult:
        failed = BatchOperationResult()
        message = _stopped_message(error) if policy is FailurePolicy.ABORT_ALL else str(error)
        for c in pending:
            failed.add_failure(c.item, message)
        return failed

    async def _timed(
        self,
        operation: BatchOperation,
        candidates: list[_Candidate],
        options: BatchProcessingOptions | None,
        handler: ChunkHandler,
    ) -> BatchOperationResult:
        opts = self._options(options)
        start = time.monotonic()
        logger.info(
            "batch_started",
            operation=operation,
            total=len(candidates),
            chunk_size=opts.chunk_size,
            max_concurrency=opts.max_concurrency,
            policy=opts.effective_policy,
        )
        result = await self._run_chunks(operation, candidates, opts, handler)
        logger.info(
            "batch_completed",
            operation=operation,
            total=result.stats.total,
            successful=result.stats.successful,
            failed=result.stats.failed,
            duration_ms=round((time.monotonic() - start) * 1000, 2),
        )
        return result

    # ── Best-effort side effects ─────────────────────────────────

    async def _cache_get_many(self, ids: Sequence[str]) -> dict[str, Record]:
        if self._cache is None or not ids:
            return {}
        try:
            return await self._cache.get_many(ids)
        except Exception as exc:
            logger.warning("cache_get_many_failed", count=len(ids), error=str(exc))
            return {}

    async def _cache_set_many(self, records: Sequence[Record]) -> None:
        if self._cache is None or not records:
            return
        try:
            await self._cache.set_many(records)
        except Exception as exc:
            logger.warning("cache_set_many_failed", count=len(records), error=str(exc))

    async def _cache_invalidate(self, ids: Sequence[str]) -> None:
        if self._cache is None:
            return
        for record_id in ids:
            try:
                await self._cache.invalidate(record_id)
            except Exception as exc:
                logger.warning("cache_invalidate_failed", record_id=record_id, error=str(exc))

    def _emit(self, event: AuditEvent) -> None:
        if self._emitter is None:
            return
        try:
            self._emitter.emit(event)
        except Exception as exc:
            logger.warning("event_emit_failed", action=event.action, error=str(exc))

    # ── Create ───────────────────────────────────────────────────

    def _prepare_create(self, items: Sequence[Any]) -> list[_Candidate]:
        """Validate every item and mark in-batch email duplicates (first wins)."""
        seen: set[str] = set()
        candidates: list[_Candidate] = []
        for item in items:
            verdict = self._validate_create(item)
            if not verdict.valid:
                candidates.append(_Candidate(item=item, error=verdict.reason))
                continue
            email = normalize_email(item["email"])
            if email in seen:
                candidates.append(_Candidate(item=item, error=DUPLICATE_EMAIL))
                continue
            seen.add(email)
            candidates.append(
                _Candidate(
                    item=item,
                    key=email,
                    payload={"email": email, "name": item["name"].strip()},
                )
            )
        return candidates

    def _hash_all(self, passwords: list[str]) -> list[str]:
        """Hash a chunk of passwords. Runs in a worker thread."""
        return [self._hash_password(p) for p in passwords]

    async def _create_chunk(
        self, chunk: list[_Candidate], policy: FailurePolicy
    ) -> tuple[BatchOperationResult, bool]:
        result = BatchOperationResult()
        staged: list[_Candidate] = []
        for c in chunk:
            if c.error:
                result.add_failure(c.item, c.error)
            else:
                staged.append(c)
        if not staged:
            return result, False

        # Items already reported as existing must not be failed again.
        pending = list(staged)
        try:
            for c in staged:
                if await self._store.exists_by_key("email", c.key):
                    result.add_failure(c.item, ALREADY_EXISTS)
                    pending = [p for p in pending if p is not c]
            staged = pending
            if not staged:
                return result, False

            hashes = await asyncio.to_thread(
                self._hash_all, [c.item["password"] for c in staged]
            )
            rows = [
                {**c.payload, "password_hash": password_hash, "is_active": True}
                for c, password_hash in zip(staged, hashes, strict=True)
            ]
            inserted = await self._store.bulk_insert(rows)
        except Exception as exc:
            logger.error("batch_create_chunk_failed", size=len(pending), error=str(exc))
            result.merge(self._fail_chunk(pending, exc, policy))
            return result, True

        for record in inserted:
            result.add_success(record)
        await self._cache_set_many(inserted)
        for record in inserted:
            self._emit(user_event("user.created", record["id"], email=record.get("email")))
        return result, False

    async def create(
        self,
        items: Sequence[Any],
        options: BatchProcessingOptions | None = None,
    ) -> BatchOperationResult:
        """Create users in chunks.

        Duplicate emails within one call: the first valid occurrence is
        created, later ones fail with ``DUPLICATE_EMAIL``.
        """
        if not items:
            return BatchOperationResult.empty()
        candidates = self._prepare_create(items)
        return await self._timed(BatchOperation.CREATE, candidates, options, self._create_chunk)

    # ── Lookup ───────────────────────────────────────────────────

    async def lookup(
        self,
        ids: Sequence[Any],
        options: BatchProcessingOptions | None = None,
    ) -> LookupResult:
        """Best-effort lookup by id: cache first, store for the misses.

        Malformed ids, unknown ids and ids lost to a failing store chunk
        are all simply absent from ``records``.
        """
        opts = self._options(options)
        valid_ids = list(dict.fromkeys(i for i in ids if is_valid_id(i)))
        result = LookupResult(requested=len(ids))
        if not valid_ids:
            return result

        start = time.monotonic()
        cached = await self._cache_get_many(valid_ids)
        missing = [i for i in valid_ids if i not in cached]
        fetched: dict[str, Record] = {}

        if missing:
            semaphore = asyncio.Semaphore(opts.max_concurrency)

            async def _fetch(index: int, chunk: list[str]) -> list[Record]:
                async with semaphore:
                    try:
                        records = await self._store.fetch_by_ids(chunk)
                    except Exception as exc:
                        logger.error(
                            "batch_lookup_chunk_failed",
                            chunk_index=index,
                            size=len(chunk),
                            error=str(exc),
                        )
                        return []
                    await self._cache_set_many(records)
                    return records

            chunk_records = await asyncio.gather(
                *(_fetch(i, c) for i, c in enumerate(split(missing, opts.chunk_size)))
            )
            for records in chunk_records:
                for record in records:
                    fetched[record["id"]] = record

        for record_id in valid_ids:
            record = cached.get(record_id) or fetched.get(record_id)
            if record is not None:
                result.records[record_id] = record

        logger.info(
            "batch_lookup_completed",
            operation=BatchOperation.LOOKUP,
            requested=result.requested,
            valid=len(valid_ids),
            cache_hits=len(cached),
            store_hits=len(fetched),
            found=result.found,
            duration_ms=round((time.monotonic() - start) * 1000, 2),
        )
        return result

    # ── Update ───────────────────────────────────────────────────

    def _prepare_update(self, updates: Sequence[Any]) -> list[_Candidate]:
        seen_ids: set[str] = set()
        seen_emails: set[str] = set()
        candidates: list[_Candidate] = []
        for raw in updates:
            try:
                update = raw if isinstance(raw, BatchUpdate) else BatchUpdate.model_validate(raw)
            except ValueError:
                candidates.append(_Candidate(item=raw, error="invalid update item"))
                continue
            item = update.model_dump()

            verdict = self._validate_update(update.data)
            if not verdict.valid:
                if verdict.reason == CREDENTIAL_POLICY_ERROR:
                    self._emit(
                        AuditEvent(
                            action="user.credential_update_denied",
                            resource=f"user:{update.id}",
                            category=AuditCategory.SECURITY,
                            outcome=AuditOutcome.DENIED,
                        )
                    )
                candidates.append(_Candidate(item=item, error=verdict.reason))
                continue
            verdict = validate_id(update.id)
            if not verdict.valid:
                candidates.append(_Candidate(item=item, error=verdict.reason))
                continue

            patch = dict(update.data)
            if "email" in patch:
                patch["email"] = normalize_email(patch["email"])
            if "name" in patch:
                patch["name"] = patch["name"].strip()

            if update.id in seen_ids:
                candidates.append(_Candidate(item=item, error=DUPLICATE_ID))
                continue
            if "email" in patch and patch["email"] in seen_emails:
                candidates.append(_Candidate(item=item, error=DUPLICATE_EMAIL))
                continue
            seen_ids.add(update.id)
            if "email" in patch:
                seen_emails.add(patch["email"])
            candidates.append(_Candidate(item=item, key=update.id, payload=patch))
        return candidates

    async def _update_chunk(
        self, chunk: list[_Candidate], policy: FailurePolicy
    ) -> tuple[BatchOperationResult, bool]:
        result = BatchOperationResult()
        staged: list[_Candidate] = []
        for c in chunk:
            if c.error:
                result.add_failure(c.item, c.error)
            else:
                staged.append(c)
        if not staged:
            return result, False

        # Items already reported as conflicting must not be failed again.
        pending = list(staged)
        try:
            for c in staged:
                if "email" in c.payload:
                    owner = await self._store.find_by_key("email", c.payload["email"])
                    if owner is not None and owner["id"] != c.key:
                        result.add_failure(c.item, EMAIL_IN_USE)
                        pending = [p for p in pending if p is not c]
            staged = pending
            if not staged:
                return result, False
            touched = set(await self._store.apply_updates([(c.key, c.payload) for c in staged]))
        except Exception as exc:
            logger.error("batch_update_chunk_failed", size=len(pending), error=str(exc))
            result.merge(self._fail_chunk(pending, exc, policy))
            return result, True

        await self._cache_invalidate([c.key for c in staged if c.key in touched])

        refreshed: dict[str, Record] = {}
        if touched:
            try:
                refreshed = {r["id"]: r for r in await self._store.fetch_by_ids(list(touched))}
            except Exception as exc:
                logger.warning("batch_update_reread_failed", count=len(touched), error=str(exc))

        for c in staged:
            if c.key not in touched:
                result.add_failure(c.item, NOT_FOUND)
                continue
            result.add_success(refreshed.get(c.key) or {"id": c.key, **c.payload})
            self._emit(user_event("user.updated", c.key, fields=sorted(c.payload)))
        return result, False

    async def update(
        self,
        updates: Sequence[BatchUpdate | dict[str, Any]],
        options: BatchProcessingOptions | None = None,
    ) -> BatchOperationResult:
        """Apply partial updates in chunks.

        Credential fields are rejected before any store call. Updated ids
        are invalidated in the cache, never refreshed.
        """
        if not updates:
            return BatchOperationResult.empty()
        candidates = self._prepare_update(updates)
        return await self._timed(BatchOperation.UPDATE, candidates, options, self._update_chunk)

    # ── Soft delete ──────────────────────────────────────────────

    @staticmethod
    def _prepare_ids(ids: Sequence[Any]) -> list[_Candidate]:
        seen: set[str] = set()
        candidates: list[_Candidate] = []
        for record_id in ids:
            verdict = validate_id(record_id)
            if not verdict.valid:
                candidates.append(_Candidate(item=record_id, error=verdict.reason))
            elif record_id in seen:
                candidates.append(_Candidate(item=record_id, error=DUPLICATE_ID))
            else:
                seen.add(record_id)
                candidates.append(_Candidate(item=record_id, key=record_id))
        return candidates

    async def _soft_delete_chunk(
        self, chunk: list[_Candidate], policy: FailurePolicy
    ) -> tuple[BatchOperationResult, bool]:
        result = BatchOperationResult()
        staged = [c for c in chunk if not c.error]
        for c in chunk:
            if c.error:
                result.add_failure(c.item, c.error)
        if not staged:
            return result, False

        try:
            affected = await self._store.soft_delete_many([c.key for c in staged])
        except Exception as exc:
            logger.error("batch_soft_delete_chunk_failed", size=len(staged), error=str(exc))
            result.merge(self._fail_chunk(staged, exc, policy))
            return result, True

        deleted: list[str] = []
        if affected == len(staged):
            deleted = [c.key for c in staged]
        elif policy is FailurePolicy.ABORT_ALL:
            for c in staged:
                result.add_failure(c.item, NOT_FOUND)
            return result, True
        else:
            if affected:
                # Some rows are already gone; which ones is unknown.
                logger.warning(
                    "store_partial_soft_delete", requested=len(staged), affected=affected
                )
                await self._cache_invalidate([c.key for c in staged])
            for c in staged:
                try:
                    single = await self._store.soft_delete_many([c.key])
                except Exception as exc:
                    result.add_failure(c.item, str(exc))
                    continue
                if single:
                    deleted.append(c.key)
                else:
                    result.add_failure(c.item, NOT_FOUND)

        for record_id in deleted:
            result.add_success(record_id)
        await self._cache_invalidate(deleted)
        for record_id in deleted:
            self._emit(user_event("user.deleted", record_id))
        return result, False

    async def soft_delete(
        self,
        ids: Sequence[Any],
        options: BatchProcessingOptions | None = None,
    ) -> BatchOperationResult:
        """Soft-delete users in chunks, reporting one outcome per id.

        A chunk whose set-based delete affects nothing is retried id by id
        under ``ISOLATE_CHUNK``, so valid ids are not penalised for missing
        siblings.
        """
        if not ids:
            return BatchOperationResult.empty()
        candidates = self._prepare_ids(ids)
        return await self._timed(
            BatchOperation.SOFT_DELETE, candidates, options, self._soft_delete_chunk
        )

    # ── Last login ───────────────────────────────────────────────

    async def _last_login_chunk(
        self, chunk: list[_Candidate], policy: FailurePolicy
    ) -> tuple[BatchOperationResult, bool]:
        result = BatchOperationResult()
        staged = [c for c in chunk if not c.error]
        for c in chunk:
            if c.error:
                result.add_failure(c.item, c.error)
        if not staged:
            return result, False

        try:
            active = {r["id"] for r in await self._store.fetch_by_ids([c.key for c in staged])}
            present = [c for c in staged if c.key in active]
            if present:
                affected = await self._store.update_by_predicate(
                    [c.key for c in present], {"last_login_at": datetime.now(UTC)}
                )
                if affected != len(present):
                    logger.warning(
                        "last_login_affected_mismatch", expected=len(present), affected=affected
                    )
        except Exception as exc:
            logger.error("batch_last_login_chunk_failed", size=len(staged), error=str(exc))
            result.merge(self._fail_chunk(staged, exc, policy))
            return result, True

        for c in staged:
            if c.key in active:
                result.add_success(c.key)
            else:
                result.add_failure(c.item, NOT_FOUND)
        await self._cache_invalidate([c.key for c in present])
        return result, False

    async def update_last_login(
        self,
        ids: Sequence[Any],
        options: BatchProcessingOptions | None = None,
    ) -> BatchOperationResult:
        """Stamp ``last_login_at`` on every active user in *ids*."""
        if not ids:
            return BatchOperationResult.empty()
        candidates = self._prepare_ids(ids)
        return await self._timed(
            BatchOperation.LAST_LOGIN, candidates, options, self._last_login_chunk
        )

    # ── Cache maintenance ────────────────────────────────────────

    async def warm_up_cache(
        self,
        ids: Sequence[Any],
        options: BatchProcessingOptions | None = None,
    ) -> int:
        """Load *ids* from the store into the cache. Returns records cached."""
        if self._cache is None:
            return 0
        valid_ids = list(dict.fromkeys(i for i in ids if is_valid_id(i)))
        if not valid_ids:
            return 0

        cache = self._cache

        async def _warm_chunk(chunk: list[str]) -> int:
            try:
                records = await self._store.fetch_by_ids(chunk)
            except Exception as exc:
                logger.error("cache_warm_up_chunk_failed", size=len(chunk), error=str(exc))
                return 0
            try:
                await cache.set_many(records)
            except Exception as exc:
                logger.warning("cache_warm_up_write_failed", size=len(chunk), error=str(exc))
                return 0
            return len(records)

        opts = self._options(options)
        cached = sum(await process_in_chunks(valid_ids, opts.chunk_size, _warm_chunk))

        logger.info(
            "cache_warmed_up", operation=BatchOperation.WARM_UP, requested=len(ids), cached=cached
        )
        return cached

    async def cache_stats(self) -> dict[str, Any]:
        if self._cache is None:
            return {"enabled": False}
        try:
            stats = await self._cache.get_stats()
        except Exception as exc:
            logger.warning("cache_stats_failed", error=str(exc))
            return {"enabled": True, "error": str(exc)}
        return {"enabled": True, **stats}

    async def clear_cache(self) -> int:
        if self._cache is None:
            return 0
        try:
            deleted = await self._cache.clear()
        except Exception as exc:
            logger.warning("cache_clear_failed", error=str(exc))
            return 0
        self._emit(
            AuditEvent(
                action="cache.cleared",
                resource="cache:users",
                category=AuditCategory.MAINTENANCE,
                metadata={"deleted": deleted},
            )
        )
        return deleted

    # ── Pagination ───────────────────────────────────────────────

    async def list_page(
        self,
        cursor: str | None = None,
        limit: int = DEFAULT_LIMIT,
        descending: bool = True,
    ) -> Page:
        """Return one keyset page of active users.

        Raises ``ValueError`` for a malformed cursor. Store errors
        propagate, since a page has no partial form.
        """
        limit = clamp_limit(limit)
        after = parse_cursor(cursor) if cursor else None
        rows = await self._store.list_page(after, limit + 1, descending)

        has_more = len(rows) > limit
        rows = rows[:limit]
        next_cursor = None
        if has_more and rows:
            last = rows[-1]
            next_cursor = encode_cursor(last["created_at"], last["id"])
        return Page(items=rows, next_cursor=next_cursor, has_more=has_more, limit=limit)
