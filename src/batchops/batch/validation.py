"""Per-item structural validation. Pure functions, no I/O."""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MAX_NAME_LENGTH = 256
MIN_PASSWORD_LENGTH = 8
MAX_PASSWORD_BYTES = 72

CREDENTIAL_FIELDS = frozenset({"password", "password_hash"})
IMMUTABLE_FIELDS = frozenset({"id", "created_at", "updated_at", "deleted_at"})
UPDATABLE_FIELDS = frozenset({"name", "email", "is_active"})

CREDENTIAL_POLICY_ERROR = "policy violation: credential updates forbidden"


@dataclass(frozen=True)
class ValidationResult:
    """Either valid, or invalid with a human-readable reason."""

    valid: bool
    reason: str = ""

    @classmethod
    def ok(cls) -> ValidationResult:
        return cls(valid=True)

    @classmethod
    def invalid(cls, reason: str) -> ValidationResult:
        return cls(valid=False, reason=reason)


Valid = ValidationResult.ok()


@runtime_checkable
class Validator(Protocol):
    """Anything that can judge a single batch item."""

    def __call__(self, item: Any) -> ValidationResult: ...


def normalize_email(email: str) -> str:
    return email.strip().lower()


def is_valid_id(value: Any) -> bool:
    """True for a well-formed UUID string."""
    if not isinstance(value, str):
        return False
    try:
        uuid.UUID(value)
    except ValueError:
        return False
    return True


def _name_errors(name: Any) -> list[str]:
    if not isinstance(name, str) or not name.strip():
        return ["Name is required and must be a non-empty string"]
    if len(name.strip()) > MAX_NAME_LENGTH:
        return [f"Name must be at most {MAX_NAME_LENGTH} characters"]
    return []


def _email_errors(email: Any) -> list[str]:
    if not isinstance(email, str):
        return ["Email is required and must be a string"]
    if not EMAIL_RE.match(email.strip()):
        return ["Email must be a valid email address"]
    return []


def validate_user_create(item: Any) -> ValidationResult:
    """Validate a create candidate: name, email and password."""
    if not isinstance(item, dict):
        return ValidationResult.invalid("Item must be an object")

    errors = _name_errors(item.get("name")) + _email_errors(item.get("email"))
    password = item.get("password")
    if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
        errors.append(
            f"Password is required and must be at least {MIN_PASSWORD_LENGTH} characters"
        )
    elif len(password.encode()) > MAX_PASSWORD_BYTES:
        errors.append(f"Password must be at most {MAX_PASSWORD_BYTES} bytes")

    if errors:
        return ValidationResult.invalid(", ".join(errors))
    return Valid


def validate_user_update(patch: Any) -> ValidationResult:
    """Validate a partial update.

    Credential fields are rejected before anything else; credentials are
    managed by the auth subsystem, never through batch updates.
    """
    if not isinstance(patch, dict) or not patch:
        return ValidationResult.invalid("Update data must be a non-empty object")

    keys = set(patch)
    if keys & CREDENTIAL_FIELDS:
        return ValidationResult.invalid(CREDENTIAL_POLICY_ERROR)

    immutable = sorted(keys & IMMUTABLE_FIELDS)
    if immutable:
        return ValidationResult.invalid(f"immutable field(s): {', '.join(immutable)}")

    unknown = sorted(keys - UPDATABLE_FIELDS)
    if unknown:
        return ValidationResult.invalid(f"unknown field(s): {', '.join(unknown)}")

    errors: list[str] = []
    if "name" in patch:
        errors += _name_errors(patch["name"])
    if "email" in patch:
        errors += _email_errors(patch["email"])
    if "is_active" in patch and not isinstance(patch["is_active"], bool):
        errors.append("is_active must be a boolean")

    if errors:
        return ValidationResult.invalid(", ".join(errors))
    return Valid


def validate_id(value: Any) -> ValidationResult:
    if is_valid_id(value):
        return Valid
    return ValidationResult.invalid("invalid id format")
