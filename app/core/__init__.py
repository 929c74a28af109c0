"""
Core infrastructure shared by the chat backend.

Services (import from core.services):
    - BaseService: Base class with logger and transaction helpers

Exceptions (import from core.exceptions):
    - BaseApplicationError and its HTTP-mapped subclasses
    - api_exception_handler: DRF exception handler

Decorators (import from core.decorators):
    - translate_store_errors: OperationalError -> TransientStoreError

Helpers (import from core.helpers):
    - retry_transient: One retry on TransientStoreError

Note:
    Models are NOT imported here to avoid AppRegistryNotReady errors.
    Import them directly: from core.models import BaseModel
"""

from .exceptions import (
    BaseApplicationError,
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    TransientStoreError,
    ValidationError,
)

__all__ = [
    "BaseApplicationError",
    "ValidationError",
    "NotFoundError",
    "PermissionDeniedError",
    "ConflictError",
    "TransientStoreError",
]
