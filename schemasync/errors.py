"""
Error types for SchemaSync.

This module defines every exception the reconciliation engine raises:
- SchemaSyncError: Base exception
- NormalizationError: An expression could not be canonicalized
- DiffAmbiguityError: Rename history does not single out one candidate
- PlannerInvariantError: Dependency ordering could not be satisfied
- ChecksumMismatchError: Ledger integrity violation
- PartialApplyError: A statement failed part-way through a plan
- ConnectivityError: Transient failure talking to the database
- LedgerError / LedgerBusyError / MigrationNotFoundError: Ledger misuse
- DocumentLoadError: A schema file failed validation
- StatementError: The database rejected a statement

Invariants:
    - All errors inherit from SchemaSyncError
    - Errors carry a stable code and a details dict for debugging
    - Only ConnectivityError (or configured equivalents) is ever retried
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class SchemaSyncError(Exception):
    """Base exception for all SchemaSync errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "SCHEMASYNC_ERROR"
        self.details = details or {}


class NormalizationError(SchemaSyncError):
    """An expression or type could not be canonicalized.

    Raised when:
    - Parentheses, brackets or braces are unbalanced
    - A string literal is unterminated
    - A boolean operator has a missing operand

    Fatal: reconciliation aborts before diffing.
    """

    def __init__(
        self,
        message: str,
        expression: Optional[str] = None,
        entity_path: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            code="NORMALIZATION_ERROR",
            details={"expression": expression, "entity_path": entity_path},
        )
        self.expression = expression
        self.entity_path = entity_path


class DiffAmbiguityError(SchemaSyncError):
    """Rename history matches more than one candidate.

    The caller must add a disambiguating hint to the desired schema.
    """

    def __init__(
        self,
        message: str,
        removed_name: Optional[str] = None,
        claimants: Optional[List[str]] = None,
    ) -> None:
        super().__init__(
            message,
            code="DIFF_AMBIGUITY",
            details={"removed_name": removed_name, "claimants": claimants or []},
        )
        self.removed_name = removed_name
        self.claimants = claimants or []


class PlannerInvariantError(SchemaSyncError):
    """Dependency ordering could not be satisfied.

    Raised when:
    - Planned steps form a dependency cycle
    - A relation references a table that exists in neither document
    - A produced order violates a dependency rule
    """

    def __init__(self, message: str, entity_path: Optional[str] = None) -> None:
        super().__init__(
            message,
            code="PLANNER_INVARIANT",
            details={"entity_path": entity_path},
        )
        self.entity_path = entity_path


class ChecksumMismatchError(SchemaSyncError):
    """Stored and recomputed checksums disagree.

    Blocks further migration of the affected target until resolved.
    """

    def __init__(
        self,
        message: str,
        migration_id: Optional[str] = None,
        expected: Optional[str] = None,
        actual: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            code="CHECKSUM_MISMATCH",
            details={
                "migration_id": migration_id,
                "expected": expected,
                "actual": actual,
            },
        )
        self.migration_id = migration_id
        self.expected = expected
        self.actual = actual


class PartialApplyError(SchemaSyncError):
    """A statement failed with a non-transient error.

    Attributes:
        statement: The failing statement text
        index: Zero-based position of the statement in the plan
        applied_count: Statements confirmed before the failure
    """

    def __init__(
        self,
        message: str,
        statement: str,
        index: int,
        applied_count: int,
    ) -> None:
        super().__init__(
            message,
            code="PARTIAL_APPLY",
            details={
                "statement": statement,
                "index": index,
                "applied_count": applied_count,
            },
        )
        self.statement = statement
        self.index = index
        self.applied_count = applied_count


class ConnectivityError(SchemaSyncError):
    """Transient failure talking to the live database.

    Retried with bounded exponential backoff; escalates once retries are
    exhausted.
    """

    def __init__(self, message: str, attempts: int = 0) -> None:
        super().__init__(
            message,
            code="CONNECTIVITY_ERROR",
            details={"attempts": attempts},
        )
        self.attempts = attempts


class LedgerError(SchemaSyncError):
    """Ledger operation was rejected."""

    def __init__(self, message: str, migration_id: Optional[str] = None) -> None:
        super().__init__(
            message,
            code="LEDGER_ERROR",
            details={"migration_id": migration_id},
        )
        self.migration_id = migration_id


class LedgerBusyError(LedgerError):
    """An unresolved pending entry already exists for the target."""

    def __init__(self, target: str, pending_id: str) -> None:
        super().__init__(
            f"Target '{target}' already has a pending migration: {pending_id}",
            migration_id=pending_id,
        )
        self.code = "LEDGER_BUSY"
        self.details["target"] = target
        self.target = target


class MigrationNotFoundError(LedgerError):
    """No ledger entry matches the requested id."""

    def __init__(self, migration_id: str) -> None:
        super().__init__(f"Migration not found: {migration_id}", migration_id=migration_id)
        self.code = "MIGRATION_NOT_FOUND"


class DocumentLoadError(SchemaSyncError):
    """A schema document file could not be loaded.

    Attributes:
        path: File the document came from
        errors: Individual validation messages
    """

    def __init__(
        self,
        message: str,
        path: Optional[str] = None,
        errors: Optional[List[str]] = None,
    ) -> None:
        super().__init__(
            message,
            code="DOCUMENT_LOAD_ERROR",
            details={"path": path, "errors": errors or []},
        )
        self.path = path
        self.errors = errors or []


class StatementError(SchemaSyncError):
    """The database rejected a statement.

    Raised by executors for semantic failures (unknown table, malformed
    statement, conflicting definition). Never retried.
    """

    def __init__(self, message: str, statement: Optional[str] = None) -> None:
        super().__init__(
            message,
            code="STATEMENT_ERROR",
            details={"statement": statement},
        )
        self.statement = statement
