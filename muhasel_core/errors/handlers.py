# =============================================================================
# muhasel_core/errors/handlers.py
# Error Handling Utilities for Muhasel
# =============================================================================

from __future__ import annotations
import traceback
from typing import Any, Dict, Optional

from muhasel_core.logging import get_logger
from .exceptions import MuhaselError

logger = get_logger(__name__)


def handle_error(
    error: Exception,
    log_error: bool = True,
    user_message: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Centralized error handling function.

    Args:
        error: The exception to handle
        log_error: Whether to log the error
        user_message: Custom message to report (uses error message if None)

    Returns:
        Dict with message, code, details and recoverable flag
    """
    if isinstance(error, MuhaselError):
        message = user_message or error.message
        code = error.code
        details = error.details
        recoverable = error.recoverable
    else:
        message = user_message or str(error)
        code = "UNKNOWN"
        details = {"traceback": traceback.format_exc()}
        recoverable = True

    if log_error:
        # Expected failures (not found, bad credentials) are not stack-worthy
        if isinstance(error, MuhaselError) and recoverable:
            logger.warning(f"[{code}] {message}", extra={"details": details})
        else:
            logger.error(
                f"[{code}] {message}",
                extra={"details": details},
                exc_info=error,
            )

    return {
        "message": message,
        "code": code,
        "details": details,
        "recoverable": recoverable,
    }


class ErrorContext:
    """
    Context manager for error handling with automatic logging.

    The captured exception is kept on ``error`` so callers can count
    failures after a suppressed block.

    Usage:
        with ErrorContext("Applying remote user 42") as ctx:
            store.apply_remote("users", item)
        if ctx.error:
            failed += 1
    """

    def __init__(self, operation: str, recoverable: bool = True):
        self.operation = operation
        self.recoverable = recoverable
        self.error: Optional[BaseException] = None

    def __enter__(self) -> ErrorContext:
        logger.debug(f"Starting: {self.operation}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        if exc_type is None:
            logger.debug(f"Completed: {self.operation}")
            return False

        if not issubclass(exc_type, Exception):
            return False

        self.error = exc_val
        if isinstance(exc_val, MuhaselError):
            handle_error(exc_val)
        else:
            handle_error(exc_val, user_message=f"Error during: {self.operation}")

        # Suppress exception if recoverable
        return self.recoverable
