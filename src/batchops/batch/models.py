"""Models shared by every batch operation."""

from __future__ import annotations

import enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_CHUNK_SIZE = 100
MAX_CHUNK_SIZE = 1000
MAX_CONCURRENCY = 32

PROCESSING_STOPPED = "processing stopped"
NOT_FOUND = "not found"
ALREADY_EXISTS = "already exists"


# ── Enums ────────────────────────────────────────────────────────────


class FailurePolicy(enum.StrEnum):
    """What a chunk-level persistence error does to the rest of the run."""

    ISOLATE_CHUNK = "isolate_chunk"
    ABORT_ALL = "abort_all"


class BatchOperation(enum.StrEnum):
    CREATE = "create"
    LOOKUP = "lookup"
    UPDATE = "update"
    SOFT_DELETE = "soft_delete"
    LAST_LOGIN = "last_login"
    WARM_UP = "warm_up"


# ── Options ──────────────────────────────────────────────────────────


class BatchProcessingOptions(BaseModel):
    """Per-call processing options. Immutable once built."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    chunk_size: int = Field(
        default=DEFAULT_CHUNK_SIZE, ge=1, le=MAX_CHUNK_SIZE, alias="chunkSize"
    )
    max_concurrency: int = Field(default=1, ge=1, le=MAX_CONCURRENCY, alias="maxConcurrency")
    continue_on_error: bool = Field(default=True, alias="continueOnError")
    failure_policy: FailurePolicy | None = Field(default=None, alias="failurePolicy")

    @property
    def effective_policy(self) -> FailurePolicy:
        if self.failure_policy is not None:
            return self.failure_policy
        if self.continue_on_error:
            return FailurePolicy.ISOLATE_CHUNK
        return FailurePolicy.ABORT_ALL


# ── Inputs ───────────────────────────────────────────────────────────


class BatchUpdate(BaseModel):
    """A single ``{id, data}`` update pair."""

    id: str
    data: dict[str, Any] = Field(default_factory=dict)


# ── Results ──────────────────────────────────────────────────────────


class FailedItem(BaseModel):
    item: Any = None
    error: str


class BatchStats(BaseModel):
    total: int = 0
    successful: int = 0
    failed: int = 0


class BatchOperationResult(BaseModel):
    """Aggregated outcome of one batch call.

    ``stats.successful + stats.failed == stats.total`` holds for every
    completed call, including runs stopped by ``FailurePolicy.ABORT_ALL``.
    """

    successful: list[Any] = Field(default_factory=list)
    failed: list[FailedItem] = Field(default_factory=list)
    stats: BatchStats = Field(default_factory=BatchStats)

    @classmethod
    def empty(cls, total: int = 0) -> BatchOperationResult:
        return cls(stats=BatchStats(total=total))

    def add_success(self, item: Any) -> None:
        self.successful.append(item)
        self.stats.successful += 1

    def add_failure(self, item: Any, error: str) -> None:
        self.failed.append(FailedItem(item=item, error=error))
        self.stats.failed += 1

    def merge(self, other: BatchOperationResult) -> None:
        """Append ``other``'s outcomes without touching ``stats.total``."""
        self.successful.extend(other.successful)
        self.failed.extend(other.failed)
        self.stats.successful += other.stats.successful
        self.stats.failed += other.stats.failed

    @property
    def complete(self) -> bool:
        return self.stats.successful + self.stats.failed == self.stats.total


class LookupResult(BaseModel):
    """Records found by a batch lookup, keyed by id."""

    records: dict[str, dict[str, Any]] = Field(default_factory=dict)
    requested: int = 0

    @property
    def found(self) -> int:
        return len(self.records)

    @property
    def missing(self) -> int:
        return self.requested - self.found
