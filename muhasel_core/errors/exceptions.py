# =============================================================================
# muhasel_core/errors/exceptions.py
# Custom Exception Hierarchy for Muhasel
# =============================================================================

from enum import Enum
from typing import Optional, Dict, Any


class ErrorKind(Enum):
    """Machine-readable failure categories shared by every response."""
    NOT_FOUND = "NOT_FOUND"
    INVALID_CREDENTIALS = "INVALID_CREDENTIALS"
    NOT_AUTHORIZED = "NOT_AUTHORIZED"
    NOT_AUTHENTICATED = "NOT_AUTHENTICATED"
    STORAGE = "STORAGE"
    NETWORK = "NETWORK"
    UNAVAILABLE = "UNAVAILABLE"
    VALIDATION = "VALIDATION"
    CONFIGURATION = "CONFIGURATION"
    UNKNOWN = "UNKNOWN"


class MuhaselError(Exception):
    """
    Base exception for all Muhasel errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code (an ErrorKind value)
        details: Additional context as a dictionary
        recoverable: Whether the error can be recovered from
    """

    kind: ErrorKind = ErrorKind.UNKNOWN

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        recoverable: bool = True,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.kind.value
        self.details = details or {}
        self.recoverable = recoverable

    def __str__(self) -> str:
        base = f"[{self.code}] {self.message}"
        if self.details:
            base += f" | Details: {self.details}"
        return base

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization"""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
            "recoverable": self.recoverable,
        }


# =============================================================================
# DATA LAYER EXCEPTIONS
# =============================================================================

class NotFoundError(MuhaselError):
    """Raised when a requested entity id does not exist locally"""

    kind = ErrorKind.NOT_FOUND

    def __init__(
        self,
        message: str,
        entity: Optional[str] = None,
        entity_id: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if entity:
            details["entity"] = entity
        if entity_id:
            details["entity_id"] = entity_id

        super().__init__(message=message, details=details, **kwargs)


class StorageError(MuhaselError):
    """Raised when the local storage engine fails (disk, corruption, constraint)"""

    kind = ErrorKind.STORAGE

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        table: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if operation:
            details["operation"] = operation
        if table:
            details["table"] = table

        super().__init__(message=message, details=details, **kwargs)


class ValidationError(MuhaselError):
    """Raised when a request carries missing or unknown fields"""

    kind = ErrorKind.VALIDATION

    def __init__(self, message: str, field: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", {})
        if field:
            details["field"] = field

        super().__init__(message=message, details=details, **kwargs)


# =============================================================================
# AUTHENTICATION / AUTHORIZATION EXCEPTIONS
# =============================================================================

class InvalidCredentialsError(MuhaselError):
    """Raised on login failure; never says whether the user exists"""

    kind = ErrorKind.INVALID_CREDENTIALS

    def __init__(self, message: str = "Invalid credentials", **kwargs):
        super().__init__(message=message, **kwargs)


class NotAuthenticatedError(MuhaselError):
    """Raised when an operation needs a session and there is none"""

    kind = ErrorKind.NOT_AUTHENTICATED

    def __init__(self, message: str = "Not authenticated", **kwargs):
        super().__init__(message=message, **kwargs)


class NotAuthorizedError(MuhaselError):
    """Raised when the session role may not touch the requested entity"""

    kind = ErrorKind.NOT_AUTHORIZED

    def __init__(
        self,
        message: str,
        role: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if role:
            details["role"] = role

        super().__init__(message=message, details=details, **kwargs)


# =============================================================================
# REMOTE / CONNECTIVITY EXCEPTIONS
# =============================================================================

class NetworkError(MuhaselError):
    """Raised when a remote call fails (connectivity, timeout, non-2xx)"""

    kind = ErrorKind.NETWORK

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        response: Optional[Dict[str, Any]] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if status is not None:
            details["status"] = status

        super().__init__(message=message, details=details, **kwargs)
        self.status = status
        self.response = response

    @property
    def transient(self) -> bool:
        """True for transport failures and 5xx answers, False for 4xx rejections"""
        return self.status is None or self.status >= 500


class UnavailableError(MuhaselError):
    """Raised when an operation needs connectivity or is unsupported offline"""

    kind = ErrorKind.UNAVAILABLE

    def __init__(self, message: str = "Operation not available in offline mode", **kwargs):
        super().__init__(message=message, **kwargs)


# =============================================================================
# CONFIGURATION EXCEPTIONS
# =============================================================================

class ConfigurationError(MuhaselError):
    """Raised when configuration is invalid or missing"""

    kind = ErrorKind.CONFIGURATION

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        expected_type: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if config_key:
            details["config_key"] = config_key
        if expected_type:
            details["expected_type"] = expected_type

        super().__init__(
            message=message,
            details=details,
            recoverable=False,
            **kwargs,
        )
