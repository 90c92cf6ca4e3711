# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

"""
Exception taxonomy shared by the Socket.IO handlers and the REST endpoints.

Realtime services raise RealtimeError subclasses. Socket handlers turn them
into scoped "<scope>:error" events for the originating connection; the REST
layer maps them to JSON responses through realtime_exception_handler.
"""

import logging
from typing import Any, Optional

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class RealtimeError(Exception):
    """Base class for errors raised by realtime services."""

    code = "REALTIME_ERROR"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, *, details: Optional[Any] = None):
        self.message = message
        self.details = details
        super().__init__(message)

    def to_payload(self) -> dict:
        payload = {"error": self.message, "code": self.code}
        if self.details is not None:
            payload["details"] = self.details
        return payload


class ValidationFailed(RealtimeError):
    """Bad input: empty content, missing ids, malformed payload."""

    code = "VALIDATION_FAILED"
    status_code = status.HTTP_400_BAD_REQUEST


class NotFound(RealtimeError):
    """Room, task, chat or notification does not exist."""

    code = "NOT_FOUND"
    status_code = status.HTTP_404_NOT_FOUND


class PermissionDenied(RealtimeError):
    """Caller is not a participant of the target room."""

    code = "PERMISSION_DENIED"
    status_code = status.HTTP_403_FORBIDDEN


class UpstreamUnavailable(RealtimeError):
    """Cache or AI provider is down, rate limited or timed out."""

    code = "UPSTREAM_UNAVAILABLE"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class StreamFailure(RealtimeError):
    """The change-feed stream failed or is unsupported."""

    code = "STREAM_FAILURE"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class CustomHTTPException(HTTPException):
    """HTTP exception carrying an application error code."""

    def __init__(
        self,
        status_code: int,
        detail: Any = None,
        error_code: Optional[int] = None,
    ):
        super().__init__(status_code=status_code, detail=detail)
        self.error_code = error_code


async def http_exception_handler(
    request: Request, exc: CustomHTTPException
) -> JSONResponse:
    """Render CustomHTTPException as {"detail", "error_code"}."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "detail": exc.detail,
            "error_code": exc.error_code or exc.status_code,
        },
    )


async def realtime_exception_handler(
    request: Request, exc: RealtimeError
) -> JSONResponse:
    """Render service-level errors raised from REST endpoints."""
    if exc.status_code >= 500:
        logger.warning(f"[API] {exc.code}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error_code": exc.code},
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "detail": "Request parameter validation failed",
            "error_code": status.HTTP_422_UNPROCESSABLE_ENTITY,
            "errors": exc.errors(),
        },
    )


async def python_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"Unhandled exception: {exc}", exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "detail": "Internal server error",
            "error_code": status.HTTP_500_INTERNAL_SERVER_ERROR,
        },
    )
