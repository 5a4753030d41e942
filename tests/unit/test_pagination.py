"""Tests for keyset cursor helpers."""

from __future__ import annotations

import pytest

from batchops.batch.pagination import clamp_limit, encode_cursor, parse_cursor


class TestCursor:
    def test_round_trip(self) -> None:
        cursor = encode_cursor("2026-01-02T03:04:05+00:00", "abc")
        assert "=" not in cursor
        assert parse_cursor(cursor) == ("2026-01-02T03:04:05+00:00", "abc")

    @pytest.mark.parametrize("cursor", ["aGVsbG8", "e30", "!!!!"])
    def test_garbage_rejected(self, cursor: str) -> None:
        with pytest.raises(ValueError, match="Invalid cursor"):
            parse_cursor(cursor)


class TestClampLimit:
    @pytest.mark.parametrize(("given", "expected"), [(0, 1), (-5, 1), (50, 50), (5000, 1000)])
    def test_clamped(self, given: int, expected: int) -> None:
        assert clamp_limit(given) == expected

    def test_custom_max(self) -> None:
        assert clamp_limit(500, max_limit=100) == 100
