"""
Custom exceptions for service layer.

Provides specific exception types for business logic errors
that can be translated to HTTP responses or CLI exit codes.
"""

from typing import Any, List, Optional, Sequence


class ServiceError(Exception):
    """Base exception for service layer errors."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class NotFoundError(ServiceError):
    """Raised when a requested resource is not found."""

    def __init__(self, resource: str, identifier: Any):
        self.resource = resource
        self.identifier = identifier
        super().__init__(f"{resource} {identifier} not found")


class ConflictError(ServiceError):
    """
    Raised when an operation conflicts with existing state.

    ``conflicts`` lists the references that block the operation, for
    example the builds that use a version as their fallback source.
    """

    def __init__(self, message: str, conflicts: Optional[List[str]] = None):
        self.conflicts = list(conflicts or [])
        super().__init__(message)


class ValidationError(ServiceError):
    """Raised when input validation fails, before any mutation."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Any = None,
        allowed: Optional[Sequence[str]] = None,
    ):
        self.field = field
        self.value = value
        self.allowed = list(allowed) if allowed is not None else None
        super().__init__(message)


class StorageError(ServiceError):
    """Raised when a blob storage operation fails."""

    def __init__(self, message: str, path: Optional[str] = None):
        self.path = path
        super().__init__(message)
