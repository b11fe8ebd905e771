"""Custom middleware for request validation and error handling."""

import logging
import uuid
from typing import Callable

from fastapi import Request, Response, status
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from jbs.core.errors import INTERNAL_ERROR_MESSAGE, ErrorCode, ErrorResponse

logger = logging.getLogger(__name__)

ALLOWED_CONTENT_TYPES = ("application/json", "multipart/form-data", "application/x-www-form-urlencoded")


class RequestValidationMiddleware(BaseHTTPMiddleware):
    """Middleware for request validation and security checks.

    Enforces:
    - Request size limits
    - Content-Type validation for POST/PUT/PATCH requests with a body
    """

    def __init__(
        self,
        app: ASGIApp,
        max_request_size: int = 1024 * 1024,  # 1 MB default
        enforce_content_type: bool = True,
    ) -> None:
        super().__init__(app)
        self.max_request_size = max_request_size
        self.enforce_content_type = enforce_content_type

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = getattr(request.state, "request_id", None) or str(uuid.uuid4())
        client_host = request.client.host if request.client else "unknown"

        content_length = request.headers.get("content-length")
        if content_length:
            try:
                size = int(content_length)
            except ValueError:
                size = 0
            if size > self.max_request_size:
                logger.warning(f"Request too large: {size} bytes from {client_host}")
                return ErrorResponse.create(
                    code=ErrorCode.VALIDATION_ERROR,
                    message=f"Request too large. Maximum size is {self.max_request_size} bytes",
                    status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                    request_id=request_id,
                )

            # Validate Content-Type for state-changing methods that carry a body
            if (
                self.enforce_content_type
                and size > 0
                and request.method in {"POST", "PUT", "PATCH"}
            ):
                content_type = request.headers.get("content-type", "")
                if not content_type.startswith(ALLOWED_CONTENT_TYPES):
                    logger.warning(f"Invalid Content-Type from {client_host}: {content_type}")
                    return ErrorResponse.create(
                        code=ErrorCode.VALIDATION_ERROR,
                        message="Content-Type must be application/json",
                        status_code=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
                        request_id=request_id,
                    )

        return await call_next(request)


class ErrorResponseMiddleware(BaseHTTPMiddleware):
    """Middleware to standardize error responses.

    Anything that escapes the exception handlers becomes a generic 500 with
    no stack trace or exception type in the body.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        try:
            return await call_next(request)
        except Exception:
            request_id = getattr(request.state, "request_id", "unknown")
            logger.exception(f"Request error: {request.method} {request.url.path}")
            return ErrorResponse.create(
                code=ErrorCode.INTERNAL_ERROR,
                message=INTERNAL_ERROR_MESSAGE,
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                request_id=request_id,
            )
