"""Lock request validation rules."""

from __future__ import annotations

import re

from .exceptions import LockServiceError, LockServiceErrorCodes, LockValidationError

_IDENTIFIER_RE = re.compile(r"^[a-zA-Z0-9_-]{3,64}$")
_TABLE_NAME_RE = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")

MIN_LEASE_DURATION = 1
MAX_LEASE_DURATION = 86400
MAX_TABLE_NAME_LENGTH = 63


def validate_identifier(field: str, value: str | None) -> None:
    """Validate namespace / lock name / instance id ([a-zA-Z0-9_-], 3-64 chars)."""
    if value is None:
        raise LockValidationError(field, f"{field} is required")
    if not isinstance(value, str) or not _IDENTIFIER_RE.fullmatch(value):
        raise LockValidationError(
            field,
            f"{field} must be 3-64 characters of letters, digits, '_' or '-': {value!r}",
        )


def validate_lease_duration(lease_duration: int | None) -> None:
    """Validate lease duration in seconds (1-86400)."""
    if lease_duration is None:
        raise LockValidationError("lease_duration", "lease_duration is required")
    if isinstance(lease_duration, bool) or not isinstance(lease_duration, int):
        raise LockValidationError("lease_duration", f"lease_duration must be an integer, got {lease_duration!r}")
    if lease_duration < MIN_LEASE_DURATION or lease_duration > MAX_LEASE_DURATION:
        raise LockValidationError(
            "lease_duration",
            f"lease_duration must be {MIN_LEASE_DURATION}-{MAX_LEASE_DURATION}, got {lease_duration}",
        )


def validate_table_name(table: str) -> str:
    """Validate that a table name is a safe PostgreSQL identifier (max 63 chars)."""
    if not table:
        raise LockServiceError(LockServiceErrorCodes.INVALID_CONFIG, "Table name cannot be empty")
    if not _TABLE_NAME_RE.fullmatch(table):
        raise LockServiceError(
            LockServiceErrorCodes.INVALID_CONFIG,
            "Invalid table name. Table name must start with a letter or underscore "
            "and contain only letters, numbers, and underscores.",
        )
    if len(table) > MAX_TABLE_NAME_LENGTH:
        raise LockServiceError(
            LockServiceErrorCodes.INVALID_CONFIG,
            f"Table name cannot exceed {MAX_TABLE_NAME_LENGTH} characters",
        )
    return table
