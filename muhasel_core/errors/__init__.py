# =============================================================================
# muhasel_core/errors/__init__.py
# Centralized Error Handling for Muhasel
# =============================================================================

from .exceptions import (
    ErrorKind,
    MuhaselError,
    NotFoundError,
    StorageError,
    ValidationError,
    InvalidCredentialsError,
    NotAuthenticatedError,
    NotAuthorizedError,
    NetworkError,
    UnavailableError,
    ConfigurationError,
)

from .handlers import (
    handle_error,
    ErrorContext,
)

__all__ = [
    # Exceptions
    "ErrorKind",
    "MuhaselError",
    "NotFoundError",
    "StorageError",
    "ValidationError",
    "InvalidCredentialsError",
    "NotAuthenticatedError",
    "NotAuthorizedError",
    "NetworkError",
    "UnavailableError",
    "ConfigurationError",
    # Handlers
    "handle_error",
    "ErrorContext",
]
