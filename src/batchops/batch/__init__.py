"""Chunked batch operations over user records."""

from batchops.batch.chunking import process_in_chunks, split
from batchops.batch.engine import BatchOperationEngine
from batchops.batch.models import (
    BatchOperationResult,
    BatchProcessingOptions,
    BatchStats,
    BatchUpdate,
    FailedItem,
    FailurePolicy,
    LookupResult,
)
from batchops.batch.validation import ValidationResult

__all__ = [
    "BatchOperationEngine",
    "BatchOperationResult",
    "BatchProcessingOptions",
    "BatchStats",
    "BatchUpdate",
    "FailedItem",
    "FailurePolicy",
    "LookupResult",
    "ValidationResult",
    "process_in_chunks",
    "split",
]
