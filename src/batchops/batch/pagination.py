"""Keyset cursor pagination over ``(created_at, id)``.

Cursors are base64-encoded JSON holding the sort key of the last row of
the previous page. They are opaque to callers.
"""

from __future__ import annotations

import base64
import binascii
import json
from typing import Any

from pydantic import BaseModel, Field

DEFAULT_LIMIT = 100
MAX_LIMIT = 1000


class Page(BaseModel):
    """One page of records."""

    items: list[dict[str, Any]] = Field(default_factory=list)
    next_cursor: str | None = None
    has_more: bool = False
    limit: int = DEFAULT_LIMIT


def encode_cursor(created_at: str, record_id: str) -> str:
    """Encode a row's sort key as a base64 cursor string."""
    payload = json.dumps({"created_at": created_at, "id": record_id}).encode()
    return base64.urlsafe_b64encode(payload).decode().rstrip("=")


def parse_cursor(cursor: str) -> tuple[str, str]:
    """Decode a cursor string to ``(created_at, id)``.

    Raises ``ValueError`` for anything that was not produced by
    ``encode_cursor``.
    """
    try:
        padding = 4 - len(cursor) % 4
        if padding != 4:
            cursor += "=" * padding
        data = json.loads(base64.urlsafe_b64decode(cursor))
        return str(data["created_at"]), str(data["id"])
    except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError, KeyError, TypeError) as exc:
        raise ValueError(f"Invalid cursor: {cursor!r}") from exc


def clamp_limit(limit: int, max_limit: int = MAX_LIMIT) -> int:
    return max(1, min(limit, max_limit))
