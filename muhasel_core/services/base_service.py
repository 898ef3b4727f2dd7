# =============================================================================
# muhasel_core/services/base_service.py
# Base Service Class with Common Functionality
# =============================================================================

from __future__ import annotations
from abc import ABC
from typing import Optional, Dict, Any, Callable
from dataclasses import dataclass

from muhasel_core.logging import get_logger, LogContext
from muhasel_core.errors import handle_error, MuhaselError, ErrorKind

# Envelope keys that are not carried into metadata
_ENVELOPE_KEYS = ("success", "data", "message", "error")


@dataclass
class ServiceResult:
    """
    Standard result container for service operations.

    Mirrors the ``{success, data, message}`` envelope the remote backend
    speaks, so online and offline answers look the same to callers.
    """
    success: bool
    data: Optional[Any] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

    def __bool__(self) -> bool:
        return self.success

    @property
    def message(self) -> Optional[str]:
        """Human-readable message (error text or informational message)"""
        if self.error:
            return self.error
        return (self.metadata or {}).get("message")

    @property
    def kind(self) -> Optional[ErrorKind]:
        """ErrorKind for a failed result, None on success"""
        if self.success:
            return None
        try:
            return ErrorKind(self.error_code)
        except ValueError:
            return ErrorKind.UNKNOWN

    @classmethod
    def ok(cls, data: Any = None, metadata: Dict[str, Any] = None) -> ServiceResult:
        """Create a successful result"""
        return cls(success=True, data=data, metadata=metadata)

    @classmethod
    def fail(
        cls,
        error: str,
        error_code: str = "UNKNOWN",
        metadata: Dict[str, Any] = None
    ) -> ServiceResult:
        """Create a failed result"""
        return cls(
            success=False,
            error=error,
            error_code=error_code,
            metadata=metadata,
        )

    @classmethod
    def from_exception(cls, e: Exception) -> ServiceResult:
        """Create a failed result from an exception"""
        if isinstance(e, MuhaselError):
            return cls(
                success=False,
                error=e.message,
                error_code=e.code,
                metadata=e.details,
            )
        return cls(
            success=False,
            error=str(e),
            error_code="EXCEPTION",
        )

    @classmethod
    def from_envelope(cls, payload: Dict[str, Any]) -> ServiceResult:
        """
        Build a result from a remote JSON envelope.

        ``{"success": true, "data": ..., "count": 3}`` keeps ``count`` (and any
        other extra key) in metadata.
        """
        success = bool(payload.get("success"))
        metadata = {k: v for k, v in payload.items() if k not in _ENVELOPE_KEYS}
        if success:
            if payload.get("message"):
                metadata["message"] = payload["message"]
            return cls(success=True, data=payload.get("data"), metadata=metadata or None)

        message = payload.get("message") or payload.get("error") or "Request failed"
        return cls(
            success=False,
            data=payload.get("data"),
            error=str(message),
            error_code=payload.get("code", "REMOTE"),
            metadata=metadata or None,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the ``{success, data|message}`` envelope"""
        payload: Dict[str, Any] = {"success": self.success}
        if self.data is not None:
            payload["data"] = self.data
        if self.message:
            payload["message"] = self.message
        if not self.success and self.error_code:
            payload["code"] = self.error_code
        for key, value in (self.metadata or {}).items():
            payload.setdefault(key, value)
        return payload


class BaseService(ABC):
    """
    Abstract base class for all services.

    Provides common functionality:
    - Logging
    - Error handling
    - Result standardization

    Usage:
        class MyService(BaseService):
            def do_something(self) -> ServiceResult:
                return self.safe_execute("Doing something", self._work)
    """

    def __init__(self):
        self.logger = get_logger(self.__class__.__name__)

    def log_operation(self, operation: str) -> LogContext:
        """
        Create a logging context for an operation.

        Usage:
            with self.log_operation("Uploading local changes"):
                ...
        """
        return LogContext(self.logger, operation)

    def safe_execute(
        self,
        operation: str,
        func: Callable[..., Any],
        *args,
        **kwargs
    ) -> ServiceResult:
        """
        Execute a function with error handling and logging.

        A function that already returns a ServiceResult is passed through;
        any other return value is wrapped in ``ServiceResult.ok``.

        Args:
            operation: Description of the operation
            func: Function to execute
            *args, **kwargs: Arguments to pass to func

        Returns:
            ServiceResult with success/failure status
        """
        try:
            result = func(*args, **kwargs)
        except MuhaselError as e:
            handle_error(e)
            return ServiceResult.from_exception(e)
        except Exception as e:
            self.logger.error(f"{operation} failed: {e}", exc_info=True)
            return ServiceResult.fail(str(e) or f"{operation} failed")

        if isinstance(result, ServiceResult):
            return result
        return ServiceResult.ok(result)
