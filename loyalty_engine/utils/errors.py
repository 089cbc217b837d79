"""
JSON error responses for the loyalty engine API.

Every error body has the same shape:
{
    "error": {
        "message": "Segment not found",
        "code": "SEGMENT_NOT_FOUND"
    }
}

Route handlers return one of the short helpers below; service exceptions
(LoyaltyError subclasses) are converted by exception_response from the
app-level error handler.
"""
import logging
from enum import Enum
from typing import Union

from flask import jsonify

logger = logging.getLogger(__name__)


class ErrorCode(str, Enum):
    """Error codes returned by the HTTP layer itself."""

    # 401 / 403
    AUTH_REQUIRED = "AUTH_REQUIRED"
    PERMISSION_DENIED = "PERMISSION_DENIED"

    # 400
    INVALID_REQUEST = "INVALID_REQUEST"
    MISSING_FIELD = "MISSING_FIELD"
    VALIDATION_ERROR = "VALIDATION_ERROR"

    # 404
    NOT_FOUND = "NOT_FOUND"
    ORGANIZATION_NOT_FOUND = "ORGANIZATION_NOT_FOUND"
    SEGMENT_NOT_FOUND = "SEGMENT_NOT_FOUND"

    # 500
    INTERNAL_ERROR = "INTERNAL_ERROR"
    RECALCULATION_FAILED = "RECALCULATION_FAILED"


def error_response(message: str, code: Union[ErrorCode, str] = ErrorCode.INTERNAL_ERROR,
                   status_code: int = 500) -> tuple:
    """
    Build a (response, status) tuple in the standard error shape.

    5xx responses are logged at error level, 4xx at debug.
    """
    code = code.value if isinstance(code, ErrorCode) else code
    if status_code >= 500:
        logger.error(f"[{code}] {message}")
    else:
        logger.debug(f"[{code}] {message}")

    return jsonify({'error': {'message': message, 'code': code}}), status_code


def exception_response(error) -> tuple:
    """Convert a LoyaltyError into the standard error shape."""
    return error_response(error.message, error.code, error.status_code)


def bad_request(message: str, code: ErrorCode = ErrorCode.INVALID_REQUEST) -> tuple:
    return error_response(message, code, 400)


def unauthorized(message: str = "Authentication required") -> tuple:
    return error_response(message, ErrorCode.AUTH_REQUIRED, 401)


def forbidden(message: str = "Permission denied") -> tuple:
    return error_response(message, ErrorCode.PERMISSION_DENIED, 403)


def not_found(message: str = "Not found", code: ErrorCode = ErrorCode.NOT_FOUND) -> tuple:
    return error_response(message, code, 404)
