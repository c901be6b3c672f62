"""
Error types for the Docbase core.

Every failure surfaced to a caller is a DocbaseError subclass:
- NotFoundError: Missing collection, document or user
- ConflictError: Duplicate id/email, revision mismatch, name already open
- ValidationError: Bad payload, unknown operator, operator/type mismatch
- UnauthenticatedError: Missing, invalid, expired or revoked token
- UnauthorizedError: Valid token but insufficient scope
- InternalError: Persistence failure

Invariants:
    - All errors inherit from DocbaseError
    - Each error carries a stable ``code`` for programmatic handling
    - Error messages never include passwords or token values
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class DocbaseError(Exception):
    """Base exception for all Docbase errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    code_default = "DOCBASE_ERROR"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.code_default
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a dictionary for transport layers."""
        return {"error": self.message, "error_code": self.code, "details": self.details}


class NotFoundError(DocbaseError):
    """Resource not found.

    Raised when:
    - Collection doesn't exist
    - Document doesn't exist in its collection
    - User doesn't exist
    """

    code_default = "NOT_FOUND"

    def __init__(
        self,
        message: str,
        resource_type: str,
        resource_id: str,
    ) -> None:
        super().__init__(
            message,
            details={
                "resource_type": resource_type,
                "resource_id": resource_id,
            },
        )
        self.resource_type = resource_type
        self.resource_id = resource_id


class ConflictError(DocbaseError):
    """Write conflicts with existing state.

    Raised when:
    - Document or collection id already exists
    - Email is already registered
    - expected_revision does not match the stored revision
    - A connection name is already open
    """

    code_default = "CONFLICT"

    def __init__(
        self,
        message: str,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
        expected_revision: Optional[int] = None,
        actual_revision: Optional[int] = None,
    ) -> None:
        super().__init__(
            message,
            details={
                "resource_type": resource_type,
                "resource_id": resource_id,
                "expected_revision": expected_revision,
                "actual_revision": actual_revision,
            },
        )
        self.resource_type = resource_type
        self.resource_id = resource_id
        self.expected_revision = expected_revision
        self.actual_revision = actual_revision


class ValidationError(DocbaseError):
    """Payload or query validation failed.

    Raised when:
    - Required field is missing
    - Value is outside the tagged-value model
    - Filter operator is unknown or used on an incompatible type
    """

    code_default = "VALIDATION_ERROR"

    def __init__(
        self,
        message: str,
        field_name: Optional[str] = None,
        errors: Optional[List[str]] = None,
    ) -> None:
        super().__init__(
            message,
            details={"field": field_name, "errors": errors or []},
        )
        self.field_name = field_name
        self.errors = errors or []


class UnauthenticatedError(DocbaseError):
    """No valid session.

    Raised when a token is missing, unknown, expired or revoked, or when
    login credentials do not match.
    """

    code_default = "UNAUTHENTICATED"

    def __init__(self, message: str, reason: Optional[str] = None) -> None:
        super().__init__(message, details={"reason": reason})
        self.reason = reason


class UnauthorizedError(DocbaseError):
    """Valid session but insufficient scope for the operation."""

    code_default = "UNAUTHORIZED"

    def __init__(
        self,
        message: str,
        user_id: Optional[str] = None,
        resource_id: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            details={"user_id": user_id, "resource_id": resource_id},
        )
        self.user_id = user_id
        self.resource_id = resource_id


class InternalError(DocbaseError):
    """Persistence or other internal failure."""

    code_default = "INTERNAL"

    def __init__(self, message: str, operation: Optional[str] = None) -> None:
        super().__init__(message, details={"operation": operation})
        self.operation = operation
