"""
Standardized error response utilities for the Falko API.

Provides consistent error response format across all endpoints:
{
    "error": {
        "message": "User-friendly error message",
        "code": "ERROR_CODE",
        "details": {...}          # optional, e.g. points shortfall
    }
}

Usage:
    from falko.utils.errors import error_response, ErrorCode

    return error_response("Return not found", ErrorCode.NOT_FOUND, 404)
"""
import logging
from enum import Enum
from flask import jsonify
from typing import Optional

logger = logging.getLogger(__name__)


class ErrorCode(str, Enum):
    """Standardized error codes for API responses."""

    # Authentication & Authorization (401, 403)
    AUTH_REQUIRED = "AUTH_REQUIRED"
    INVALID_TOKEN = "INVALID_TOKEN"
    INVALID_SIGNATURE = "INVALID_SIGNATURE"
    PERMISSION_DENIED = "PERMISSION_DENIED"

    # Validation Errors (400)
    INVALID_REQUEST = "INVALID_REQUEST"
    NOT_ELIGIBLE = "NOT_ELIGIBLE"

    # Not Found (404)
    NOT_FOUND = "NOT_FOUND"
    RETURN_NOT_FOUND = "RETURN_NOT_FOUND"
    REWARD_NOT_FOUND = "REWARD_NOT_FOUND"
    ORDER_NOT_FOUND = "ORDER_NOT_FOUND"
    LABEL_NOT_FOUND = "LABEL_NOT_FOUND"

    # Business Logic Errors (400)
    INSUFFICIENT_POINTS = "INSUFFICIENT_POINTS"

    # External Service Errors (502)
    EXTERNAL_SERVICE_ERROR = "EXTERNAL_SERVICE_ERROR"

    # Server Errors (500)
    INTERNAL_ERROR = "INTERNAL_ERROR"
    DATABASE_ERROR = "DATABASE_ERROR"


def error_response(
    message: str,
    code: ErrorCode = ErrorCode.INTERNAL_ERROR,
    status_code: int = 500,
    log_error: bool = True,
    details: Optional[dict] = None
) -> tuple:
    """
    Create a standardized error response.

    Args:
        message: User-friendly error message
        code: Error code from ErrorCode enum (or a plain string code)
        status_code: HTTP status code
        log_error: Whether to log the error
        details: Optional structured details returned to the client

    Returns:
        Tuple of (response, status_code) for Flask
    """
    code_value = code.value if isinstance(code, ErrorCode) else code

    if log_error and status_code >= 500:
        logger.error(f"API Error [{code_value}]: {message}", extra={"details": details})
    elif log_error and status_code >= 400:
        logger.warning(f"API Error [{code_value}]: {message}", extra={"details": details})

    error = {
        "message": message,
        "code": code_value
    }
    if details:
        error["details"] = details

    return jsonify({"error": error}), status_code


def bad_request(message: str, code: ErrorCode = ErrorCode.INVALID_REQUEST, details: Optional[dict] = None) -> tuple:
    """400 Bad Request error."""
    return error_response(message, code, 400, log_error=False, details=details)


def unauthorized(message: str = "Authentication required", code: ErrorCode = ErrorCode.AUTH_REQUIRED) -> tuple:
    """401 Unauthorized error."""
    return error_response(message, code, 401, log_error=False)


def forbidden(message: str = "Permission denied", code: ErrorCode = ErrorCode.PERMISSION_DENIED) -> tuple:
    """403 Forbidden error."""
    return error_response(message, code, 403, log_error=False)


def internal_error(message: str = "An unexpected error occurred", details: Optional[dict] = None) -> tuple:
    """500 Internal Server Error. Details are logged, never returned."""
    logger.error(f"API Error [{ErrorCode.INTERNAL_ERROR.value}]: {message}", extra={"details": details})
    return jsonify({"error": {"message": message, "code": ErrorCode.INTERNAL_ERROR.value}}), 500
