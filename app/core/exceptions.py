"""
Global exception handling for the application.

Every failure the core raises carries a stable numeric code, an HTTP-style
status hint and a human message. The handler below renders them and keeps
internal details out of responses for anything that is not a validation error.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

import structlog
from fastapi import Request, status
from fastapi.responses import JSONResponse

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ErrorCode:
    code: int
    status: int
    message: str


class ErrorCodes:
    """Error code registry, grouped by category."""

    class AUTH:
        TOKEN_MISSING = ErrorCode(1000, 401, "Token not found")
        TOKEN_EXPIRED = ErrorCode(1001, 401, "Expired token")
        TOKEN_INVALID = ErrorCode(1002, 401, "Invalid token")
        API_KEY_INVALID = ErrorCode(1020, 403, "Unauthorized")

    class VALIDATION:
        MISSING_REQUIRED_FIELD = ErrorCode(2000, 400, "Required field is missing")
        INVALID_FORMAT = ErrorCode(2001, 400, "Invalid data format")
        INVALID_EMAIL = ErrorCode(2002, 400, "Invalid email format")
        INVALID_ARGUMENT = ErrorCode(2004, 400, "Invalid argument")
        GIVEN_RETURN_DISCREPANCY = ErrorCode(2005, 502, "Returned data does not match the request")

    class DATABASE:
        CONNECTION_ERROR = ErrorCode(3000, 500, "Database connection error")
        QUERY_ERROR = ErrorCode(3001, 500, "Database query error")
        RECORD_NOT_FOUND = ErrorCode(3002, 404, "Record not found")
        DUPLICATE_ENTRY = ErrorCode(3003, 409, "Record already exists")

    class SYSTEM:
        UNKNOWN_ERROR = ErrorCode(5000, 500, "An unknown error occurred")
        NOT_IMPLEMENTED = ErrorCode(5001, 501, "Feature not implemented")
        SERVICE_UNAVAILABLE = ErrorCode(5002, 503, "Service temporarily unavailable")

    class USER:
        NOT_FOUND = ErrorCode(6000, 404, "User not found")
        ODOO_EXISTS = ErrorCode(6001, 409, "User already has a billing account")
        ODOO_NOT_FOUND = ErrorCode(6002, 409, "User has no billing account")
        ODOO_NO_CREDENTIALS = ErrorCode(6003, 409, "User has no active billing credentials")
        ODOO_ID_MISMATCH = ErrorCode(6004, 502, "Billing user id mismatch")
        TOKEN_ROTATION_FAILED = ErrorCode(6005, 500, "API key rotation could not be stored")
        STEVE_EXISTS = ErrorCode(6006, 409, "User already has a charge-point tag")
        STEVE_NOT_FOUND = ErrorCode(6007, 409, "User has no charge-point tag")

    class ODOO:
        USER_EXISTS = ErrorCode(7000, 409, "User already exists in Odoo")
        USER_CREATE_FAILED = ErrorCode(7001, 502, "Odoo user creation failed")
        TOKEN_ROTATION_FAILED = ErrorCode(7002, 502, "Odoo API key rotation failed")
        INVOICE_CREATE_FAILED = ErrorCode(7003, 502, "Odoo invoice creation failed")
        HASH_MISMATCH = ErrorCode(7004, 502, "Odoo response signature verification failed")

    class STEVE:
        USER_EXISTS = ErrorCode(8000, 409, "OCPP tag already exists in SteVe")
        USER_CREATE_FAILED = ErrorCode(8001, 502, "SteVe OCPP tag creation failed")
        USER_FETCH_FAILED = ErrorCode(8002, 502, "SteVe OCPP tag lookup failed")
        USER_UPDATE_FAILED = ErrorCode(8003, 502, "SteVe OCPP tag update failed")
        MULTIPLE_TAGS = ErrorCode(8004, 502, "Multiple OCPP tags found for one RFID")
        TRANSACTION_FETCH_FAILED = ErrorCode(8005, 502, "SteVe transaction fetch failed")


class AppError(Exception):
    """Base class for all application exceptions."""

    def __init__(
        self,
        error: ErrorCode,
        message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        retryable: bool = False,
    ):
        self.error = error
        self.message = message or error.message
        self.details = details or {}
        self.retryable = retryable
        super().__init__(self.message)

    @property
    def code(self) -> int:
        return self.error.code

    @property
    def status_code(self) -> int:
        return self.error.status

    def to_response(self, expose_details: bool = False) -> Dict[str, Any]:
        body: Dict[str, Any] = {"success": False, "code": self.code, "msg": self.message}
        if expose_details and self.details:
            body["details"] = self.details
        return body


class ValidationException(AppError):
    """Malformed or missing input, schema violation, broken uniqueness expectation."""


class DatabaseException(AppError):
    """Query or connection failure; wraps the driver error."""


class SystemException(AppError):
    """Downstream adapter failure or an unexpected condition."""


class UnauthorizedException(AppError):
    def __init__(self, message: Optional[str] = None):
        super().__init__(ErrorCodes.AUTH.TOKEN_INVALID, message)


class ForbiddenException(AppError):
    def __init__(self, message: Optional[str] = None):
        super().__init__(ErrorCodes.AUTH.API_KEY_INVALID, message)


class AlreadyLinkedException(ValidationException):
    """The user already owns a billing account. Terminal, never retried."""

    def __init__(self, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(ErrorCodes.USER.ODOO_EXISTS, message, details)


class HashVerificationException(SystemException):
    def __init__(self, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(ErrorCodes.ODOO.HASH_MISMATCH, message, details)


class IdMismatchException(SystemException):
    def __init__(self, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(ErrorCodes.USER.ODOO_ID_MISMATCH, message, details)


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle all uncaught exceptions globally."""

    if isinstance(exc, AppError):
        log = logger.warning if exc.status_code < 500 else logger.error
        log(
            "Request failed",
            path=request.url.path,
            error=exc.__class__.__name__,
            code=exc.code,
            msg=exc.message,
            details=exc.details,
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_response(expose_details=isinstance(exc, ValidationException)),
        )

    logger.exception("Unexpected error occurred", path=request.url.path)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "success": False,
            "code": ErrorCodes.SYSTEM.UNKNOWN_ERROR.code,
            "msg": "Something went wrong.",
        },
    )
