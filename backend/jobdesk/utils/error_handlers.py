"""
Centralized error handling and user-friendly error messages.
"""
import logging
from typing import Any

from fastapi.responses import JSONResponse

from ..services.ai_client import AIClientTimeout, AllAttemptsExhausted

logger = logging.getLogger(__name__)


class AppError(Exception):
    """Base application error."""
    def __init__(self, message: str, status_code: int = 500, details: dict | None = None):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class NotFoundError(AppError):
    """Resource not found error."""
    def __init__(self, message: str = "Resource not found", details: dict | None = None):
        super().__init__(message, status_code=404, details=details)


class ValidationError(AppError):
    """Input validation error."""
    def __init__(self, message: str = "Validation failed", details: dict | None = None):
        super().__init__(message, status_code=400, details=details)


class ForbiddenError(AppError):
    """Forbidden access error."""
    def __init__(self, message: str = "Access forbidden", details: dict | None = None):
        super().__init__(message, status_code=403, details=details)


class AIServiceError(AppError):
    """Completion provider unavailable (all keys exhausted or retries used up)."""
    def __init__(self, message: str = "AI service temporarily unavailable", details: dict | None = None):
        super().__init__(message, status_code=503, details=details)


class AIResponseError(AppError):
    """The provider answered, but the content was unusable."""
    def __init__(self, message: str = "AI returned an unusable response", details: dict | None = None):
        super().__init__(message, status_code=502, details=details)


ERROR_MESSAGES = {
    # AI services
    "ai_unavailable": "AI analysis is temporarily unavailable. Please try again in a few moments.",
    "ai_timeout": "AI analysis is taking longer than expected. Please try again.",
    "ai_failed": "AI analysis encountered an error. Using basic results instead.",
    "ai_bad_response": "AI returned data we could not read. Please try again.",
    "no_api_keys": "No AI API key is currently available. Please try again later.",

    # Key administration
    "admin_disabled": "Key administration is disabled on this server.",
    "admin_forbidden": "Invalid admin token.",
    "key_not_found": "API key not found.",

    # General
    "not_found": "The requested resource was not found.",
    "server_error": "Something went wrong on our end. Please try again later.",
    "database_error": "Database connection issue. Please try again later.",
    "validation_error": "Please check your input and try again.",
}


def get_error_message(error_key: str, default: str | None = None) -> str:
    """Get a user-friendly error message."""
    return ERROR_MESSAGES.get(error_key, default or ERROR_MESSAGES["server_error"])


def handle_ai_service_error(error: Exception, operation: str = "analysis") -> dict:
    """
    Handle AI service errors gracefully with fallback.
    Returns a dict with status and user-friendly message.
    """
    logger.error("AI service error during %s: %s", operation, error)

    last = getattr(error, "last_error", None) if isinstance(error, AllAttemptsExhausted) else error

    if isinstance(last, AIClientTimeout) or "timeout" in str(error).lower():
        return {
            "success": False,
            "fallback": True,
            "message": get_error_message("ai_timeout"),
            "error_type": "timeout",
        }

    if isinstance(error, AllAttemptsExhausted) and error.available_count == 0:
        return {
            "success": False,
            "fallback": True,
            "message": get_error_message("no_api_keys"),
            "error_type": "unavailable",
        }

    return {
        "success": False,
        "fallback": True,
        "message": get_error_message("ai_failed"),
        "error_type": "error",
    }


def create_error_response(
    status_code: int,
    message: str,
    details: dict | None = None
) -> JSONResponse:
    """Create a standardized error response."""
    content: dict[str, Any] = {
        "success": False,
        "error": message,
    }

    if details:
        content["details"] = details

    return JSONResponse(
        status_code=status_code,
        content=content
    )
