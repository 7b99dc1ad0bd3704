"""
Error taxonomy for the Strata ingestion-merge core.

Field and row level errors (SanitizationFailure, CastFailure,
QualityRuleViolation, NullPrimaryKey) are absorbed by the stage that detects
them and show up as counts in a CommitSummary. Batch and table level errors
(SchemaDriftViolation, WriteConflict) abort the current stage and are raised
to the caller.
"""

from typing import Any, Optional


class StrataError(Exception):
    """Base class for all errors raised by Strata."""

    reason = "strata_error"

    def __init__(self, message: str, *, reason: Optional[str] = None):
        super().__init__(message)
        if reason is not None:
            self.reason = reason


class ContractError(StrataError, ValueError):
    """Raised when a table contract or schema migration is malformed."""

    reason = "invalid_contract"


class SanitizationFailure(StrataError):
    """Raised when a record cannot be confidently masked."""

    reason = "sanitization_failed"

    def __init__(self, message: str, *, field: Optional[str] = None, detector: Optional[str] = None):
        super().__init__(message)
        self.field = field
        self.detector = detector


class SchemaDriftViolation(StrataError):
    """Raised when a write would change the type of an existing column."""

    reason = "schema_drift"

    def __init__(self, table: str, drifted: dict, message: Optional[str] = None):
        details = ", ".join(
            f"{col}: {old} -> {new}" for col, (old, new) in sorted(drifted.items())
        )
        super().__init__(message or f"Schema drift on '{table}': {details}")
        self.table = table
        self.drifted = drifted


class CastFailure(StrataError):
    """A single field could not be cast to its contract type."""

    reason = "cast_failed"

    def __init__(self, column: str, value: Any, type_name: str, cause: Optional[str] = None):
        super().__init__(
            f"Cannot cast column '{column}' value {value!r} to {type_name}"
            + (f": {cause}" if cause else "")
        )
        self.column = column
        self.value = value
        self.type_name = type_name


class QualityRuleViolation(StrataError):
    """A row failed a row-level quality rule."""

    def __init__(self, rule: str, reason: str, message: str):
        super().__init__(message, reason=reason)
        self.rule = rule


class NullPrimaryKey(StrataError):
    """A row's primary key is null after casting."""

    reason = "null_primary_key"


class CommitConflict(StrataError):
    """Signalled by a table store when a concurrent writer committed first."""

    reason = "commit_conflict"

    def __init__(self, table: str, expected_version: int, actual_version: int):
        super().__init__(
            f"Commit conflict on '{table}': expected version {expected_version}, "
            f"found {actual_version}"
        )
        self.table = table
        self.expected_version = expected_version
        self.actual_version = actual_version


class WriteConflict(StrataError):
    """Raised when optimistic commit retries are exhausted."""

    reason = "write_conflict"

    def __init__(self, table: str, attempts: int):
        super().__init__(
            f"Gave up committing to '{table}' after {attempts} conflicting attempts"
        )
        self.table = table
        self.attempts = attempts


__all__ = [
    "StrataError",
    "ContractError",
    "SanitizationFailure",
    "SchemaDriftViolation",
    "CastFailure",
    "QualityRuleViolation",
    "NullPrimaryKey",
    "CommitConflict",
    "WriteConflict",
]
