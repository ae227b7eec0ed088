"""
Centralized exception handling for the TMS Transport API.

This module provides:
- Base APIException class extending FastAPI's HTTPException.
- Custom domain-specific exceptions with error codes, status codes and headers.
- Utility functions for formatting DB errors, logging, and routing exceptions.
- Handlers rendering every APIException as a `{success, error, message}` envelope.

Usage:
    - Raise specific exceptions in route handlers or services.
    - Use `handle()` to normalize raw exceptions (DB, Redis, Pydantic, HTTP)
      into API-friendly responses.
"""

from traceback import format_exception
from logging import getLogger
from fastapi import status, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.encoders import jsonable_encoder
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from psycopg2.errorcodes import UNIQUE_VIOLATION, FOREIGN_KEY_VIOLATION
from pydantic import ValidationError
from redis.exceptions import RedisError
from requests import RequestException


# ---------------------------------------------------------------------------
# Utility functions
# ---------------------------------------------------------------------------
def sqlState(e: IntegrityError) -> str | None:
    """Return the SQLSTATE of a driver level integrity error, if the driver reports one."""
    diag = getattr(e.orig, "diag", None)
    return getattr(diag, "sqlstate", None)


def formatIntegrityError(e: IntegrityError) -> str:
    """
    Format a database integrity error into a user-friendly message.
    """
    diag = getattr(e.orig, "diag", None)
    errorMessage: str = getattr(diag, "message_detail", None) or str(e.orig)
    errorMessage = errorMessage.translate({ord(i): None for i in '\\"\\.\\(\\)'})
    errorMessage = errorMessage.replace("Key ", "For ")
    errorMessage = errorMessage.replace("=", " value ")
    return errorMessage


def logException(e: Exception) -> None:
    """Log an exception with traceback using Uvicorn's error logger."""
    detail = "".join(format_exception(type(e), e, e.__traceback__))
    logger = getLogger("uvicorn.error")
    logger.error(detail)


# ---------------------------------------------------------------------------
# Base Exception
# ---------------------------------------------------------------------------
class APIException(HTTPException):
    """
    Base class for all application-specific exceptions.

    Provides default handling of status_code, detail, and headers, plus a
    machine readable `error` code and optional `extra` fields which are
    merged into the response envelope.
    """

    status_code = status.HTTP_400_BAD_REQUEST
    error = "VALIDATION_ERROR"
    detail = None
    headers = None

    def __init__(self, *args, extra: dict | None = None, **kwargs):
        kwargs.setdefault("status_code", self.status_code)
        kwargs.setdefault("detail", self.detail)
        kwargs.setdefault("headers", self.headers)
        super().__init__(*args, **kwargs)
        self.extra = extra or {}

    def envelope(self) -> dict:
        body = {"success": False, "error": self.error, "message": self.detail}
        body.update(self.extra)
        return jsonable_encoder(body)


# ---------------------------------------------------------------------------
# Exception handling entrypoint
# ---------------------------------------------------------------------------
def handle(e: Exception):
    """
    Normalize and re-raise exceptions as API-friendly errors.

    Converts raw exceptions from DB, Pydantic, Redis, outbound HTTP calls, etc.
    into corresponding APIException subclasses. Anything unexpected is logged
    with its traceback and surfaced as a generic INTERNAL_ERROR.
    """
    if isinstance(e, APIException):
        raise e
    if isinstance(e, IntegrityError):
        if sqlState(e) == UNIQUE_VIOLATION:
            raise UniqueViolation(formatIntegrityError(e))
        if sqlState(e) == FOREIGN_KEY_VIOLATION:
            raise ForeignKeyViolation(formatIntegrityError(e))
    if isinstance(e, SQLAlchemyError):
        logException(e)
        raise DatabaseError()
    if isinstance(e, ValidationError):
        raise PydanticError(detail=str(e))
    if isinstance(e, RedisError):
        raise RedisDBError(detail=str(e))
    if isinstance(e, RequestException):
        logException(e)
        raise UpstreamError()

    logException(e)
    raise InternalError()


# ---------------------------------------------------------------------------
# Exception handlers
# ---------------------------------------------------------------------------
async def apiExceptionHandler(request: Request, e: APIException) -> JSONResponse:
    return JSONResponse(
        status_code=e.status_code, content=e.envelope(), headers=e.headers
    )


async def requestValidationHandler(
    request: Request, e: RequestValidationError
) -> JSONResponse:
    body = {
        "success": False,
        "error": "VALIDATION_ERROR",
        "message": "Invalid request parameters",
        "details": jsonable_encoder(e.errors()),
    }
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=body,
        headers={"X-Error": "RequestValidationError"},
    )


# ---------------------------------------------------------------------------
# Exception Classes
# ---------------------------------------------------------------------------
class PydanticError(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    error = "VALIDATION_ERROR"
    headers = {"X-Error": "PydanticError"}

    def __init__(self, detail: str):
        super().__init__(detail=detail)


class UniqueViolation(APIException):
    status_code = status.HTTP_409_CONFLICT
    error = "CONFLICT"
    headers = {"X-Error": "UniqueViolation"}

    def __init__(self, detail: str):
        super().__init__(detail=detail)


class ForeignKeyViolation(APIException):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    error = "VALIDATION_ERROR"
    headers = {"X-Error": "ForeignKeyViolation"}

    def __init__(self, detail: str):
        super().__init__(detail=detail)


class QRCodeRequired(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    error = "QR_CODE_REQUIRED"
    detail = "QR code is required"
    headers = {"X-Error": "QRCodeRequired"}


class StaffInfoRequired(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    error = "STAFF_INFO_REQUIRED"
    detail = "Staff ID or email is required"
    headers = {"X-Error": "StaffInfoRequired"}


class TicketNotFound(APIException):
    status_code = status.HTTP_404_NOT_FOUND
    error = "NOT_FOUND"
    detail = "Invalid QR code - booking not found"
    headers = {"X-Error": "TicketNotFound"}


class BookingNotFound(APIException):
    status_code = status.HTTP_404_NOT_FOUND
    error = "NOT_FOUND"
    detail = "Booking not found"
    headers = {"X-Error": "BookingNotFound"}


class NotificationNotFound(APIException):
    status_code = status.HTTP_404_NOT_FOUND
    error = "NOT_FOUND"
    detail = "Notification not found"
    headers = {"X-Error": "NotificationNotFound"}


class BookingCancelled(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    error = "BOOKING_CANCELLED"
    detail = "This booking has been cancelled"
    headers = {"X-Error": "BookingCancelled"}


class WrongDate(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    error = "WRONG_DATE"
    headers = {"X-Error": "WrongDate"}

    def __init__(self, ticketDate, currentDate):
        detail = f"This ticket is for {ticketDate}, not today ({currentDate})"
        super().__init__(
            detail=detail,
            extra={"ticketDate": ticketDate, "currentDate": currentDate},
        )


class AlreadyMarked(APIException):
    status_code = status.HTTP_409_CONFLICT
    error = "ALREADY_MARKED"
    detail = "Attendance already marked for this student today"
    headers = {"X-Error": "AlreadyMarked"}

    def __init__(self, existingAttendance: dict):
        super().__init__(extra={"existingAttendance": existingAttendance})


class NotAuthorized(APIException):
    status_code = status.HTTP_403_FORBIDDEN
    error = "NOT_AUTHORIZED"
    detail = "You are not assigned to this route"
    headers = {"X-Error": "NotAuthorized"}


class InvalidSchedulerKey(APIException):
    status_code = status.HTTP_401_UNAUTHORIZED
    error = "UNAUTHORIZED"
    detail = "Unauthorized - invalid scheduler key"
    headers = {"X-Error": "InvalidSchedulerKey"}


class InvalidTimeSlot(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    error = "INVALID_TIME_SLOT"
    headers = {"X-Error": "InvalidTimeSlot"}

    def __init__(self, detail: str = "Invalid time - scheduler only runs at 17:00 or 18:00"):
        super().__init__(detail=detail)


class InvalidAction(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    error = "VALIDATION_ERROR"
    headers = {"X-Error": "InvalidAction"}

    def __init__(self, detail: str = "Invalid action"):
        super().__init__(detail=detail)


class MissingParameter(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    error = "VALIDATION_ERROR"
    headers = {"X-Error": "MissingParameter"}

    def __init__(self, name: str):
        detail = f"The {name} is missing"
        super().__init__(detail=detail)


class BulkConflict(APIException):
    status_code = status.HTTP_409_CONFLICT
    error = "CONFLICT"
    detail = "Attendance changed while marking, no rows were inserted"
    headers = {"X-Error": "BulkConflict"}


class LockAcquireTimeout(APIException):
    status_code = status.HTTP_409_CONFLICT
    error = "CONFLICT"
    headers = {"X-Error": "LockAcquireTimeout"}
    detail = "Lock acquisition timed out"


class DatabaseError(APIException):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    error = "DATABASE_ERROR"
    detail = "Database operation failed"
    headers = {"X-Error": "DatabaseError"}


class UpstreamError(APIException):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    error = "UPSTREAM_ERROR"
    detail = "A dependent service call failed"
    headers = {"X-Error": "UpstreamError"}


class InternalError(APIException):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    error = "INTERNAL_ERROR"
    detail = "Internal server error"
    headers = {"X-Error": "InternalError"}


class RedisDBError(APIException):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    error = "INTERNAL_ERROR"
    headers = {"X-Error": "RedisAPIError"}

    def __init__(self, detail: str):
        super().__init__(detail=detail)
