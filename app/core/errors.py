"""
Service-level exceptions.

Services raise these instead of HTTPException so they stay usable outside a
request. `app.main` maps each class to its HTTP status.
"""
from typing import Any, Dict, Optional


class ServiceError(Exception):
    """Base class for errors raised by the service layer."""
    status_code: int = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(ServiceError):
    """Malformed or missing input."""
    status_code = 400


class AuthenticationError(ServiceError):
    """Bad credential, PIN or token."""
    status_code = 401


class AuthorizationError(ServiceError):
    """Authenticated caller lacks a capability."""
    status_code = 403


class NotFoundError(ServiceError):
    status_code = 404


class UnknownPermissionError(NotFoundError):
    """Permission name is not in the catalog."""

    def __init__(self, name: str):
        super().__init__(f"Permission '{name}' not found")
        self.name = name


class ConflictError(ServiceError):
    status_code = 409


class StorageError(ServiceError):
    """A datastore operation failed and was rolled back."""

    def __init__(self, operation: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(f"Storage failure during {operation}")
        self.operation = operation
        self.context = context or {}


class DataIntegrityError(ServiceError):
    """Stored rows contradict an invariant (e.g. diverging event headers)."""
