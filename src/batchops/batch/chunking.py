"""Chunk planning and the sequential chunk combinator."""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Sequence
from typing import TypeVar

import structlog

logger = structlog.get_logger()

T = TypeVar("T")
R = TypeVar("R")


def split(items: Sequence[T], chunk_size: int) -> list[list[T]]:
    """Split *items* into contiguous chunks of at most *chunk_size*.

    Every chunk holds exactly ``chunk_size`` items except the last, which
    holds the remainder. Order is preserved and nothing is dropped.
    """
    if chunk_size <= 0:
        raise ValueError(f"chunk_size must be positive, got {chunk_size}")
    return [list(items[i : i + chunk_size]) for i in range(0, len(items), chunk_size)]


async def process_in_chunks(
    items: Sequence[T],
    chunk_size: int,
    processor: Callable[[list[T]], Awaitable[R]],
) -> list[R]:
    """Run *processor* over each chunk, one at a time, in order.

    The next chunk is not started until the previous call resolves. An
    exception raised by *processor* propagates immediately and the
    remaining chunks are never processed.
    """
    chunks = split(items, chunk_size)
    logger.debug("chunk_processing_started", items=len(items), chunks=len(chunks))

    results: list[R] = []
    for index, chunk in enumerate(chunks):
        try:
            results.append(await processor(chunk))
        except Exception as exc:
            logger.error(
                "chunk_processing_failed",
                chunk_index=index,
                start=index * chunk_size,
                error=str(exc),
            )
            raise

    logger.debug("chunk_processing_completed", items=len(items), chunks=len(chunks))
    return results
