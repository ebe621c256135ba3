"""Error handling framework for the link console.

This package provides:
- Error code registry with E-XXXX format codes
- Typed domain exceptions mapped to HTTP status codes by the API

Error categories:
- E-2xxx: Validation errors
- E-3xxx: Remote link service errors
- E-4xxx: Store/system errors
"""

from linkconsole.errors.domain import (
    ConflictError,
    ConnectionNameError,
    DomainError,
    DuplicateConnectionError,
    InactiveOwnerError,
    NameRule,
    NotFoundError,
    ValidationError,
)
from linkconsole.errors.registry import (
    ERROR_REGISTRY,
    ErrorCategory,
    ErrorCode,
    get_error,
    get_errors_by_category,
)

__all__ = [
    # Registry
    "ErrorCode",
    "ErrorCategory",
    "ERROR_REGISTRY",
    "get_error",
    "get_errors_by_category",
    # Domain
    "DomainError",
    "NotFoundError",
    "ConflictError",
    "ValidationError",
    "ConnectionNameError",
    "DuplicateConnectionError",
    "InactiveOwnerError",
    "NameRule",
]
