"""
Error types for Acme Server.

This module defines every exception surfaced by the storage core:
- AcmeError: Base exception
- ValidationError: Bad or unknown field, bad filter, oversized page
- NotFoundError: Update/delete/get on a missing key
- ConflictError: Optimistic version mismatch
- ConnectionError: Store unreachable
- SchemaError: Schema initialization failed or drift detected
- StorageError: Any other failure of the underlying store

Invariants:
    - All errors inherit from AcmeError
    - Errors carry a stable code for programmatic handling
    - None of these errors are retried by the core
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class AcmeError(Exception):
    """Base exception for all Acme Server errors.

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
        self.code = code or "ACME_ERROR"
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the JSON error body returned by the HTTP layer."""
        return {
            "error": self.message,
            "error_code": self.code,
            "details": self.details,
        }


class ValidationError(AcmeError):
    """Input validation failed.

    Raised when:
    - A payload or filter names a field the descriptor does not declare
    - A value cannot be converted to the field's semantic type
    - A required field is missing on create
    - A page size exceeds the configured ceiling
    """

    def __init__(
        self,
        message: str,
        field_name: Optional[str] = None,
        errors: Optional[List[str]] = None,
    ) -> None:
        super().__init__(
            message,
            code="VALIDATION_ERROR",
            details={"field": field_name, "errors": errors or []},
        )
        self.field_name = field_name
        self.errors = errors or []


class UnknownEntityError(ValidationError):
    """Entity name is not registered."""

    def __init__(self, entity: str) -> None:
        super().__init__(f"Unknown entity '{entity}'")
        self.code = "UNKNOWN_ENTITY"
        self.details["entity"] = entity
        self.entity = entity


class NotFoundError(AcmeError):
    """Target row does not exist."""

    def __init__(
        self,
        message: str,
        entity: str,
        key: Any,
    ) -> None:
        super().__init__(
            message,
            code="NOT_FOUND",
            details={"entity": entity, "key": key},
        )
        self.entity = entity
        self.key = key


class ConflictError(AcmeError):
    """Optimistic concurrency check failed.

    Raised when an update or delete carries a version that does not
    match the version currently stored for the row.
    """

    def __init__(
        self,
        message: str,
        entity: str,
        key: Any,
        expected_version: Optional[int] = None,
        actual_version: Optional[int] = None,
    ) -> None:
        super().__init__(
            message,
            code="CONFLICT",
            details={
                "entity": entity,
                "key": key,
                "expected_version": expected_version,
                "actual_version": actual_version,
            },
        )
        self.entity = entity
        self.key = key
        self.expected_version = expected_version
        self.actual_version = actual_version


class ConnectionError(AcmeError):
    """Failed to open a connection to the store."""

    def __init__(
        self,
        message: str,
        address: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            code="CONNECTION_ERROR",
            details={"address": address},
        )
        self.address = address


class SchemaError(AcmeError):
    """Schema initialization failed or the live schema drifted.

    Attributes:
        table: Table the problem was found in (if any)
        problems: Individual drift findings
    """

    def __init__(
        self,
        message: str,
        table: Optional[str] = None,
        problems: Optional[List[str]] = None,
    ) -> None:
        super().__init__(
            message,
            code="SCHEMA_ERROR",
            details={"table": table, "problems": problems or []},
        )
        self.table = table
        self.problems = problems or []


class StorageError(AcmeError):
    """The underlying store rejected or failed an operation."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            code="STORAGE_ERROR",
            details={"operation": operation},
        )
        self.operation = operation
