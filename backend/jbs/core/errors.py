"""
Standardized error response system.

Provides consistent error responses across all API endpoints and maps the
domain exception taxonomy onto HTTP status codes. Authentication failures
collapse to a fixed set of messages so no internal reason reaches the
client.
"""
import logging
import uuid
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse

from jbs.core.exceptions import (
    AccountLocked,
    CredentialError,
    InfraError,
    LockError,
    PasswordPolicyError,
    PasswordReusedError,
    RateLimited,
    RegistrationError,
    ResetTokenInvalid,
    TokenError,
    TokenExpired,
    UserTypeMismatch,
)

logger = logging.getLogger(__name__)

INVALID_CREDENTIALS_MESSAGE = "Invalid credentials"
INVALID_TOKEN_MESSAGE = "Invalid token."
TOKEN_EXPIRED_MESSAGE = "Token expired."
INTERNAL_ERROR_MESSAGE = "Internal server error"
RATE_LIMITED_MESSAGE = "Too many failed sign-in attempts from this address. Please try again later."


class ErrorCode:
    """Standard error codes."""

    # Validation errors
    VALIDATION_ERROR = "VALIDATION_ERROR"
    PASSWORD_REUSED = "PASSWORD_REUSED"

    # Authentication/Authorization
    UNAUTHORIZED = "UNAUTHORIZED"
    INVALID_CREDENTIALS = "INVALID_CREDENTIALS"
    FORBIDDEN = "FORBIDDEN"
    INVALID_USER_TYPE = "INVALID_USER_TYPE"
    INVALID_TOKEN = "INVALID_TOKEN"
    TOKEN_EXPIRED = "TOKEN_EXPIRED"
    ACCOUNT_LOCKED = "ACCOUNT_LOCKED"
    RATE_LIMITED = "RATE_LIMITED"

    # Resource errors
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"

    # System errors
    INTERNAL_ERROR = "INTERNAL_ERROR"


class ErrorResponse:
    """Standard error response format."""

    @staticmethod
    def create(
        code: str,
        message: str,
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None,
        request_id: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> JSONResponse:
        """
        Create a standardized error response.

        Args:
            code: Machine-readable error code
            message: Human-readable error message
            status_code: HTTP status code
            details: Additional error details (optional)
            request_id: Request correlation ID (optional)
            headers: Extra response headers (optional)

        Returns:
            JSONResponse with standard error format
        """
        error_data: Dict[str, Any] = {
            "error": {
                "code": code,
                "message": message,
            }
        }

        if details:
            error_data["error"]["details"] = details

        if request_id:
            error_data["error"]["request_id"] = request_id

        return JSONResponse(status_code=status_code, content=error_data, headers=headers)


class HTTPError(HTTPException):
    """
    HTTPException with standard error response format.

    Usage:
        raise HTTPError(
            status_code=404,
            code=ErrorCode.NOT_FOUND,
            message="User not found",
            details={"user_id": str(user_id)}
        )
    """

    def __init__(
        self,
        status_code: int,
        code: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.code = code
        self.message = message
        self.details = details
        super().__init__(status_code=status_code, detail=message, headers=headers)


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", str(uuid.uuid4()))


async def http_error_handler(request: Request, exc: HTTPError) -> JSONResponse:
    """Handle HTTPError exceptions and return standardized error response."""
    return ErrorResponse.create(
        code=exc.code,
        message=exc.message,
        status_code=exc.status_code,
        details=exc.details,
        request_id=_request_id(request),
        headers=exc.headers,
    )


async def credential_error_handler(request: Request, exc: CredentialError) -> JSONResponse:
    # Same response for unknown account, wrong password and inactive account
    return ErrorResponse.create(
        code=ErrorCode.INVALID_CREDENTIALS,
        message=INVALID_CREDENTIALS_MESSAGE,
        status_code=status.HTTP_401_UNAUTHORIZED,
        request_id=_request_id(request),
    )


async def lock_error_handler(request: Request, exc: LockError) -> JSONResponse:
    minutes = exc.retry_after_minutes if isinstance(exc, AccountLocked) else None
    message = "Account is temporarily locked."
    headers = None
    details = None
    if minutes is not None:
        message = f"Account is temporarily locked. Please try again in {minutes} minutes."
        headers = {"Retry-After": str(int(exc.retry_after.total_seconds()))}
        details = {"retry_after_minutes": minutes}
    return ErrorResponse.create(
        code=ErrorCode.ACCOUNT_LOCKED,
        message=message,
        status_code=status.HTTP_423_LOCKED,
        details=details,
        request_id=_request_id(request),
        headers=headers,
    )


async def rate_limited_handler(request: Request, exc: RateLimited) -> JSONResponse:
    seconds = max(1, int(exc.retry_after.total_seconds()))
    return ErrorResponse.create(
        code=ErrorCode.RATE_LIMITED,
        message=RATE_LIMITED_MESSAGE,
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        details={"retry_after_seconds": seconds},
        request_id=_request_id(request),
        headers={"Retry-After": str(seconds)},
    )


async def token_error_handler(request: Request, exc: TokenError) -> JSONResponse:
    if isinstance(exc, TokenExpired):
        code, message = ErrorCode.TOKEN_EXPIRED, TOKEN_EXPIRED_MESSAGE
    else:
        code, message = ErrorCode.INVALID_TOKEN, INVALID_TOKEN_MESSAGE
    return ErrorResponse.create(
        code=code,
        message=message,
        status_code=status.HTTP_401_UNAUTHORIZED,
        request_id=_request_id(request),
        headers={"WWW-Authenticate": "Bearer"},
    )


async def infra_error_handler(request: Request, exc: InfraError) -> JSONResponse:
    logger.error(f"Infrastructure failure on {request.method} {request.url.path}: {type(exc).__name__}: {exc}")
    return ErrorResponse.create(
        code=ErrorCode.INTERNAL_ERROR,
        message=INTERNAL_ERROR_MESSAGE,
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        request_id=_request_id(request),
    )


async def password_reused_handler(request: Request, exc: PasswordReusedError) -> JSONResponse:
    return ErrorResponse.create(
        code=ErrorCode.PASSWORD_REUSED,
        message=str(exc),
        status_code=status.HTTP_400_BAD_REQUEST,
        request_id=_request_id(request),
    )


async def password_policy_handler(request: Request, exc: PasswordPolicyError) -> JSONResponse:
    return ErrorResponse.create(
        code=ErrorCode.VALIDATION_ERROR,
        message=str(exc),
        status_code=status.HTTP_400_BAD_REQUEST,
        details={"field": "password"},
        request_id=_request_id(request),
    )


async def registration_error_handler(request: Request, exc: RegistrationError) -> JSONResponse:
    return ErrorResponse.create(
        code=ErrorCode.CONFLICT,
        message=str(exc),
        status_code=status.HTTP_409_CONFLICT,
        details={"field": exc.field},
        request_id=_request_id(request),
    )


async def reset_token_handler(request: Request, exc: ResetTokenInvalid) -> JSONResponse:
    return ErrorResponse.create(
        code=ErrorCode.INVALID_TOKEN,
        message="Invalid or expired reset token",
        status_code=status.HTTP_400_BAD_REQUEST,
        request_id=_request_id(request),
    )


async def user_type_mismatch_handler(request: Request, exc: UserTypeMismatch) -> JSONResponse:
    return ErrorResponse.create(
        code=ErrorCode.INVALID_USER_TYPE,
        message=str(exc),
        status_code=status.HTTP_403_FORBIDDEN,
        details={"actual_role": exc.actual_role},
        request_id=_request_id(request),
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(HTTPError, http_error_handler)
    app.add_exception_handler(CredentialError, credential_error_handler)
    app.add_exception_handler(LockError, lock_error_handler)
    app.add_exception_handler(RateLimited, rate_limited_handler)
    app.add_exception_handler(TokenError, token_error_handler)
    app.add_exception_handler(InfraError, infra_error_handler)
    app.add_exception_handler(PasswordReusedError, password_reused_handler)
    app.add_exception_handler(PasswordPolicyError, password_policy_handler)
    app.add_exception_handler(RegistrationError, registration_error_handler)
    app.add_exception_handler(ResetTokenInvalid, reset_token_handler)
    app.add_exception_handler(UserTypeMismatch, user_type_mismatch_handler)


# Convenience functions for common errors

def not_found(resource: str, details: Optional[Dict[str, Any]] = None) -> HTTPError:
    """Create a 404 NOT_FOUND error."""
    return HTTPError(
        status_code=status.HTTP_404_NOT_FOUND,
        code=ErrorCode.NOT_FOUND,
        message=f"{resource} not found",
        details=details,
    )


def unauthorized(message: str = "Access denied. No token provided.") -> HTTPError:
    """Create a 401 UNAUTHORIZED error."""
    return HTTPError(
        status_code=status.HTTP_401_UNAUTHORIZED,
        code=ErrorCode.UNAUTHORIZED,
        message=message,
        headers={"WWW-Authenticate": "Bearer"},
    )


def forbidden(message: str = "Forbidden", code: str = ErrorCode.FORBIDDEN) -> HTTPError:
    """Create a 403 FORBIDDEN error."""
    return HTTPError(
        status_code=status.HTTP_403_FORBIDDEN,
        code=code,
        message=message,
    )


def validation_error(message: str, details: Optional[Dict[str, Any]] = None) -> HTTPError:
    """Create a 400 VALIDATION_ERROR error."""
    return HTTPError(
        status_code=status.HTTP_400_BAD_REQUEST,
        code=ErrorCode.VALIDATION_ERROR,
        message=message,
        details=details,
    )
