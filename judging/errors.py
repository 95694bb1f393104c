"""
judging/errors.py
Error taxonomy for the judging API

Every handled failure leaves the service as one JSON envelope:

    {"success": false, "error": "<message>", "code": "<ERROR_CODE>", ...extra}

Status mapping:
    400  bad input, wrong session/application state, duplicate request, cooldown
    401  identity token missing, malformed or expired
    403  admin access denied
    404  session, application, anchor, song or notification not found
    429  rate limit hit
    503  not enough anchor songs to build a screening set
    500  anything unexpected; details stay in the log under a logId
"""

import logging
import uuid
from datetime import datetime
from typing import Optional, Dict, Any

from fastapi import status
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class ErrorCode:
    """Machine-readable codes carried in the "code" field."""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_INPUT = "INVALID_INPUT"

    AUTH_REQUIRED = "AUTH_REQUIRED"
    AUTH_INVALID = "AUTH_INVALID"
    FORBIDDEN = "FORBIDDEN"

    NOT_FOUND = "NOT_FOUND"

    INVALID_STATE = "INVALID_STATE"
    COOLDOWN_ACTIVE = "COOLDOWN_ACTIVE"
    CONFLICT = "CONFLICT"

    RATE_LIMITED = "RATE_LIMITED"

    INTERNAL_ERROR = "INTERNAL_ERROR"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"


class APIError(Exception):
    """Raised by services; the app's exception handler renders it."""

    def __init__(
        self,
        status_code: int,
        message: str,
        code: str,
        details: Optional[Dict[str, Any]] = None
    ):
        self.status_code = status_code
        self.message = message
        self.code = code
        self.details = details
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        body = {"success": False, "error": self.message, "code": self.code}
        if self.details:
            body.update(self.details)
        return body

    def to_response(self) -> JSONResponse:
        return JSONResponse(status_code=self.status_code, content=self.to_dict())


class ValidationError(APIError):
    """400: malformed or out-of-range input (amount, direction, rating, period)"""
    def __init__(self, message: str, code: str = ErrorCode.INVALID_INPUT, details: Optional[Dict] = None):
        super().__init__(status.HTTP_400_BAD_REQUEST, message, code, details)


class UnauthorizedError(APIError):
    """401: no usable identity token"""
    def __init__(self, message: str = "Authentication required", code: str = ErrorCode.AUTH_REQUIRED):
        super().__init__(status.HTTP_401_UNAUTHORIZED, message, code)


class ForbiddenError(APIError):
    """403: caller is authenticated but not an admin"""
    def __init__(self, message: str = "Unauthorized", code: str = ErrorCode.FORBIDDEN):
        super().__init__(status.HTTP_403_FORBIDDEN, message, code)


class NotFoundError(APIError):
    """404: "<Resource> not found" """
    def __init__(self, resource: str, identifier: Any = None, code: str = ErrorCode.NOT_FOUND):
        if identifier is None:
            message = f"{resource} not found"
        else:
            message = f"{resource} {identifier} not found"
        super().__init__(status.HTTP_404_NOT_FOUND, message, code)


class InvalidStateError(APIError):
    """400: the session or application is in the wrong status for this transition"""
    def __init__(self, message: str, code: str = ErrorCode.INVALID_STATE, details: Optional[Dict] = None):
        super().__init__(status.HTTP_400_BAD_REQUEST, message, code, details)


class CooldownActiveError(InvalidStateError):
    """400: the last rejected application is still cooling down"""
    def __init__(self, next_attempt_date: datetime):
        self.next_attempt_date = next_attempt_date
        super().__init__(
            "Cooldown period active",
            code=ErrorCode.COOLDOWN_ACTIVE,
            details={"nextAttemptDate": next_attempt_date.isoformat()}
        )


class ConflictError(APIError):
    """400: duplicate pending trade, already a judge, or an application still open"""
    def __init__(self, message: str, details: Optional[Dict] = None):
        super().__init__(status.HTTP_400_BAD_REQUEST, message, ErrorCode.CONFLICT, details)


class ResourceExhaustedError(APIError):
    """503: transient shortage; the client may retry later"""
    def __init__(self, message: str):
        super().__init__(status.HTTP_503_SERVICE_UNAVAILABLE, message, ErrorCode.SERVICE_UNAVAILABLE)


def new_log_id() -> str:
    return uuid.uuid4().hex[:8]


def internal_error_response(error: Exception, context: str = "") -> JSONResponse:
    """500 envelope for an unhandled exception. The traceback is logged, never returned."""
    log_id = new_log_id()
    logger.error(
        f"[{log_id}] Unhandled {type(error).__name__} in {context}: {error}",
        exc_info=error
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "success": False,
            "error": "An unexpected error occurred. Please try again later.",
            "code": ErrorCode.INTERNAL_ERROR,
            "logId": log_id
        }
    )


STATUS_MEANINGS = {
    "400": "Bad input, wrong state, duplicate request or active cooldown",
    "401": "Identity token missing, malformed or expired",
    "403": "Admin access required",
    "404": "Session, application, anchor, song or notification not found",
    "429": "Too many requests",
    "503": "Screening temporarily unavailable, retry later",
    "500": "Unexpected server error (see logId)",
}


def get_error_summary() -> Dict[str, Any]:
    """Served at /api/errors/health so clients can discover the envelope and codes."""
    return {
        "service": "judging-errors",
        "envelope": ["success", "error", "code"],
        "status_codes": STATUS_MEANINGS,
        "error_codes": sorted(
            name for name in vars(ErrorCode) if name.isupper()
        ),
    }
