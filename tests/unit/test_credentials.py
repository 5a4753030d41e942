"""Tests for password hashing."""

from __future__ import annotations

import bcrypt

from batchops.credentials import hash_password, make_hasher


class TestPasswordHashing:
    def test_hash_is_bcrypt(self) -> None:
        hashed = hash_password("correct horse", rounds=4)
        assert hashed != "correct horse"
        assert bcrypt.checkpw(b"correct horse", hashed.encode()) is True
        assert bcrypt.checkpw(b"wrong horse", hashed.encode()) is False

    def test_salted(self) -> None:
        assert hash_password("same", rounds=4) != hash_password("same", rounds=4)

    def test_make_hasher_binds_rounds(self) -> None:
        hashed = make_hasher(4)("secret-pass")
        assert hashed.startswith("$2b$04$")
