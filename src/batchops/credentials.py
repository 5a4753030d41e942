"""Password hashing for newly created users.

Credential changes after creation belong to the auth subsystem; batch
operations only hash the initial password.
"""

from __future__ import annotations

from collections.abc import Callable

import bcrypt

PasswordHasher = Callable[[str], str]


def hash_password(password: str, rounds: int = 12) -> str:
    """Return a salted bcrypt hash of *password*."""
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt(rounds=rounds)).decode()


def make_hasher(rounds: int) -> PasswordHasher:
    """Bind a cost factor so the engine can call ``hasher(password)``."""

    def _hasher(password: str) -> str:
        return hash_password(password, rounds=rounds)

    return _hasher
