"""
Centralized Error Handling for HRMS Core

This module provides:
- Custom exception hierarchy
- Standardized error envelopes
- The single translation point from exceptions (application, HTTP,
  validation, database, unexpected) to HTTP responses
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union
from uuid import UUID
import logging
import re
import traceback

from fastapi import FastAPI, Request, HTTPException, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from sqlalchemy.exc import (
    SQLAlchemyError,
    IntegrityError,
    OperationalError,
    DataError,
)
from starlette.exceptions import HTTPException as StarletteHTTPException

from hrms.config import settings

logger = logging.getLogger("hrms.errors")


class ErrorCode(str, Enum):
    """Error codes surfaced through the envelope's error.code"""

    # 400
    VALIDATION_ERROR = "VALIDATION_ERROR"
    BAD_REQUEST = "BAD_REQUEST"
    FOREIGN_KEY_CONSTRAINT = "FOREIGN_KEY_CONSTRAINT"

    # 401 / 403
    UNAUTHORIZED = "UNAUTHORIZED"
    TOKEN_EXPIRED = "TOKEN_EXPIRED"
    INVALID_TOKEN = "INVALID_TOKEN"
    FORBIDDEN = "FORBIDDEN"

    # 404
    RECORD_NOT_FOUND = "RECORD_NOT_FOUND"
    ROUTE_NOT_FOUND = "ROUTE_NOT_FOUND"

    # 409 / 422
    UNIQUE_CONSTRAINT_VIOLATION = "UNIQUE_CONSTRAINT_VIOLATION"
    INVALID_STATE = "INVALID_STATE"
    RECONCILIATION_FAILED = "RECONCILIATION_FAILED"

    # 429
    TOO_MANY_REQUESTS = "TOO_MANY_REQUESTS"

    # 5xx
    INTERNAL_SERVER_ERROR = "INTERNAL_SERVER_ERROR"
    DATABASE_ERROR = "DATABASE_ERROR"


class AppException(Exception):
    """Base exception for all application exceptions"""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: Optional[Any] = None,
        original_error: Optional[Exception] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details
        self.original_error = original_error
        self.headers = headers
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to the envelope's error object"""
        result: Dict[str, Any] = {
            "code": self.code.value,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


# ============================================================================
# Authentication / Authorization
# ============================================================================

class AuthenticationException(AppException):
    """Missing, invalid or expired credentials"""

    def __init__(
        self,
        message: str = "Authentication required",
        code: ErrorCode = ErrorCode.UNAUTHORIZED,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_401_UNAUTHORIZED,
            details=details,
            headers={"WWW-Authenticate": "Bearer"},
        )


class TokenExpiredException(AuthenticationException):
    """Token has expired"""

    def __init__(self, message: str = "Token has expired"):
        super().__init__(message=message, code=ErrorCode.TOKEN_EXPIRED)


class TokenInvalidException(AuthenticationException):
    """Token signature or structure is invalid"""

    def __init__(self, message: str = "Invalid token"):
        super().__init__(message=message, code=ErrorCode.INVALID_TOKEN)


class AuthorizationException(AppException):
    """Authenticated but not allowed"""

    def __init__(
        self,
        message: str = "Insufficient permissions",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            code=ErrorCode.FORBIDDEN,
            message=message,
            status_code=status.HTTP_403_FORBIDDEN,
            details=details,
        )


# ============================================================================
# Request / Resource
# ============================================================================

class ValidationException(AppException):
    """Malformed request shape or values"""

    def __init__(
        self,
        message: str = "Validation failed",
        errors: Optional[List[Dict[str, Any]]] = None,
    ):
        super().__init__(
            code=ErrorCode.VALIDATION_ERROR,
            message=message,
            status_code=status.HTTP_400_BAD_REQUEST,
            details=errors,
        )


class BadRequestException(AppException):
    """Request is well-formed but cannot be honoured"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            code=ErrorCode.BAD_REQUEST,
            message=message,
            status_code=status.HTTP_400_BAD_REQUEST,
            details=details,
        )


class NotFoundException(AppException):
    """Referenced entity does not exist"""

    def __init__(
        self,
        resource_type: str,
        resource_id: Optional[Union[str, UUID]] = None,
        message: Optional[str] = None,
    ):
        super().__init__(
            code=ErrorCode.RECORD_NOT_FOUND,
            message=message or f"{resource_type} not found",
            status_code=status.HTTP_404_NOT_FOUND,
            details={
                "resource_type": resource_type,
                "resource_id": str(resource_id) if resource_id else None,
            },
        )


class ConflictException(AppException):
    """Uniqueness violation"""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        _details = dict(details or {})
        if field:
            _details["field"] = field
        super().__init__(
            code=ErrorCode.UNIQUE_CONSTRAINT_VIOLATION,
            message=message,
            status_code=status.HTTP_409_CONFLICT,
            details=_details or None,
        )


class InvalidStateException(AppException):
    """Operation not allowed from the entity's current state"""

    def __init__(self, message: str, current_state: Optional[str] = None):
        super().__init__(
            code=ErrorCode.INVALID_STATE,
            message=message,
            status_code=status.HTTP_409_CONFLICT,
            details={"current_state": current_state} if current_state else None,
        )


class ReconciliationFailedException(AppException):
    """Matching pass aborted; the run was recorded as failed"""

    def __init__(self, message: str, reconciliation_id: Optional[UUID] = None):
        super().__init__(
            code=ErrorCode.RECONCILIATION_FAILED,
            message=message,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details={"reconciliation_id": str(reconciliation_id)} if reconciliation_id else None,
        )


class RateLimitException(AppException):
    """Rate limit exceeded"""

    def __init__(self, message: str = "Too many requests, please try again later", retry_after: int = 60):
        super().__init__(
            code=ErrorCode.TOO_MANY_REQUESTS,
            message=message,
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            details={"retry_after_seconds": retry_after},
            headers={"Retry-After": str(retry_after)},
        )


class InternalServerException(AppException):
    """Unexpected failure raised deliberately by business logic"""

    def __init__(self, message: str = "Internal server error", original_error: Optional[Exception] = None):
        super().__init__(
            code=ErrorCode.INTERNAL_SERVER_ERROR,
            message=message,
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            original_error=original_error,
        )


# ============================================================================
# Envelope
# ============================================================================

def create_error_response(
    code: ErrorCode,
    message: str,
    status_code: int,
    details: Optional[Any] = None,
    exc: Optional[BaseException] = None,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    """Create a standardized error envelope"""
    error: Dict[str, Any] = {"code": code.value, "message": message}
    if details:
        error["details"] = details

    content: Dict[str, Any] = {
        "success": False,
        "error": error,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    if exc is not None and settings.is_development:
        content["stack"] = "".join(
            traceback.format_exception(type(exc), exc, exc.__traceback__)
        )

    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder(content),
        headers=headers,
    )


# ============================================================================
# Exception Handlers
# ============================================================================

async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handle AppException"""
    log = logger.error if exc.status_code >= 500 else logger.info
    log(
        f"AppException: {exc.code.value} - {exc.message}",
        extra={"path": request.url.path, "method": request.method},
        exc_info=exc.original_error,
    )

    return create_error_response(
        code=exc.code,
        message=exc.message,
        status_code=exc.status_code,
        details=exc.details,
        headers=exc.headers,
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Handle HTTPException"""
    code_map = {
        400: ErrorCode.BAD_REQUEST,
        401: ErrorCode.UNAUTHORIZED,
        403: ErrorCode.FORBIDDEN,
        404: ErrorCode.RECORD_NOT_FOUND,
        409: ErrorCode.UNIQUE_CONSTRAINT_VIOLATION,
        422: ErrorCode.VALIDATION_ERROR,
        429: ErrorCode.TOO_MANY_REQUESTS,
    }

    error_code = code_map.get(exc.status_code, ErrorCode.INTERNAL_SERVER_ERROR)
    message = exc.detail if isinstance(exc.detail, str) else str(exc.detail)

    # Router-level 404 (no matching route)
    if exc.status_code == status.HTTP_404_NOT_FOUND and message == "Not Found":
        error_code = ErrorCode.ROUTE_NOT_FOUND
        message = f"Route {request.method} {request.url.path} not found"

    logger.warning(
        f"HTTPException: {exc.status_code} - {message}",
        extra={"path": request.url.path, "method": request.method},
    )

    return create_error_response(
        code=error_code,
        message=message,
        status_code=exc.status_code,
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handle request validation errors"""
    errors = []
    for error in exc.errors():
        field = ".".join(str(loc) for loc in error["loc"] if loc != "body")
        errors.append({
            "field": field,
            "message": error["msg"],
            "type": error["type"],
        })

    logger.info(
        f"ValidationError: {len(errors)} validation errors",
        extra={"path": request.url.path, "method": request.method},
    )

    return create_error_response(
        code=ErrorCode.VALIDATION_ERROR,
        message="Validation failed",
        status_code=status.HTTP_400_BAD_REQUEST,
        details=errors,
    )


_UNIQUE_FIELD_PATTERNS = (
    re.compile(r"Key \((?P<field>[^)]+)\)="),  # PostgreSQL
    re.compile(r"UNIQUE constraint failed: (?P<field>[\w.]+)"),  # SQLite
)


def _unique_violation_field(error_str: str) -> Optional[str]:
    for pattern in _UNIQUE_FIELD_PATTERNS:
        match = pattern.search(error_str)
        if match:
            return match.group("field").split(".")[-1]
    return None


async def sqlalchemy_exception_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """Translate store-layer failures"""
    error_message = "A database error occurred"
    error_code = ErrorCode.DATABASE_ERROR
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    details = None

    if isinstance(exc, IntegrityError):
        error_str = str(exc.orig) if exc.orig else str(exc)
        lowered = error_str.lower()
        if "unique" in lowered or "duplicate" in lowered:
            error_message = "A record with this value already exists"
            error_code = ErrorCode.UNIQUE_CONSTRAINT_VIOLATION
            status_code = status.HTTP_409_CONFLICT
            field = _unique_violation_field(error_str)
            if field:
                details = {"field": field}
        elif "foreign key" in lowered:
            error_message = "Referenced record does not exist"
            error_code = ErrorCode.FOREIGN_KEY_CONSTRAINT
            status_code = status.HTTP_400_BAD_REQUEST
    elif isinstance(exc, OperationalError):
        error_message = "Database operation failed"
    elif isinstance(exc, DataError):
        error_message = "Invalid data format for database"
        error_code = ErrorCode.VALIDATION_ERROR
        status_code = status.HTTP_400_BAD_REQUEST

    logger.error(
        f"SQLAlchemyError: {type(exc).__name__} - {str(exc)}",
        extra={"path": request.url.path, "method": request.method},
        exc_info=status_code >= 500,
    )

    if status_code >= 500 and settings.is_production:
        error_message = "Internal server error"

    return create_error_response(
        code=error_code,
        message=error_message,
        status_code=status_code,
        details=details,
        exc=exc if status_code >= 500 else None,
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unhandled exceptions"""
    logger.critical(
        f"UnhandledException: {type(exc).__name__} - {str(exc)}",
        extra={"path": request.url.path, "method": request.method},
        exc_info=True,
    )

    message = "Internal server error" if settings.is_production else str(exc) or type(exc).__name__
    return create_error_response(
        code=ErrorCode.INTERNAL_SERVER_ERROR,
        message=message,
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        exc=exc,
    )


def setup_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI application"""
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(SQLAlchemyError, sqlalchemy_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
