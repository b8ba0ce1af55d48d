"""
Error types for the GeoSet server.

This module defines every exception raised by the store, the algebra
engine, the enumeration views and the backup codec:
- GeoSetError: Base exception
- NotFoundError: Set or version does not exist
- AlreadyExistsError: Conflicting set creation
- ValidationError: Bad set name, bad identifier, malformed backup document
- ConflictError: Concurrent version creation lost the race (retryable)
- TransactionFailure: Storage error inside a multi-statement transaction
- BackupIOError: Backup file could not be read or written
- StoreNotInitializedError: Database file is missing

Invariants:
    - All errors inherit from GeoSetError
    - Errors carry the offending set name/version in details
    - Storage errors are chained (raise ... from exc), never swallowed
"""

from __future__ import annotations

from typing import Any


class GeoSetError(Exception):
    """Base exception for all GeoSet errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "GEOSET_ERROR"
        self.details = details or {}


class NotFoundError(GeoSetError):
    """Set or version does not exist."""

    def __init__(
        self,
        message: str,
        set_name: str | None = None,
        version: int | None = None,
    ) -> None:
        super().__init__(
            message,
            code="NOT_FOUND",
            details={"set_name": set_name, "version": version},
        )
        self.set_name = set_name
        self.version = version


class AlreadyExistsError(GeoSetError):
    """A set with this name already has a current version."""

    def __init__(self, message: str, set_name: str | None = None) -> None:
        super().__init__(
            message,
            code="ALREADY_EXISTS",
            details={"set_name": set_name},
        )
        self.set_name = set_name


class ValidationError(GeoSetError):
    """Input failed validation.

    Raised when:
    - Set name is empty, too long or has illegal characters
    - An identifier is empty or not a string
    - An identifier is not part of the identifier universe (when enforced)
    - A backup document is malformed or has an unsupported format version
    """

    def __init__(
        self,
        message: str,
        set_name: str | None = None,
        identifiers: list[str] | None = None,
        errors: list[str] | None = None,
    ) -> None:
        super().__init__(
            message,
            code="VALIDATION_ERROR",
            details={
                "set_name": set_name,
                "identifiers": identifiers or [],
                "errors": errors or [],
            },
        )
        self.set_name = set_name
        self.identifiers = identifiers or []
        self.errors = errors or []


class ConflictError(GeoSetError):
    """Concurrent version creation lost the race.

    The transaction was rolled back; the caller may re-read and retry.
    """

    retryable = True

    def __init__(
        self,
        message: str,
        set_name: str | None = None,
        expected_version: int | None = None,
        actual_version: int | None = None,
    ) -> None:
        super().__init__(
            message,
            code="CONFLICT",
            details={
                "set_name": set_name,
                "expected_version": expected_version,
                "actual_version": actual_version,
            },
        )
        self.set_name = set_name
        self.expected_version = expected_version
        self.actual_version = actual_version


class TransactionFailure(GeoSetError):
    """Storage error during a multi-statement transaction.

    Always raised after the transaction has been rolled back.
    """

    def __init__(
        self,
        message: str,
        set_name: str | None = None,
        operation: str | None = None,
    ) -> None:
        super().__init__(
            message,
            code="TRANSACTION_FAILURE",
            details={"set_name": set_name, "operation": operation},
        )
        self.set_name = set_name
        self.operation = operation


class BackupIOError(GeoSetError):
    """Backup file could not be read or written."""

    def __init__(self, message: str, path: str | None = None) -> None:
        super().__init__(
            message,
            code="BACKUP_IO_ERROR",
            details={"path": path},
        )
        self.path = path


class StoreNotInitializedError(GeoSetError):
    """Database file does not exist yet."""

    def __init__(self, message: str, db_path: str | None = None) -> None:
        super().__init__(
            message,
            code="STORE_NOT_INITIALIZED",
            details={"db_path": db_path},
        )
        self.db_path = db_path
