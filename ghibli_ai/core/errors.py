"""Typed application errors and the uniform JSON error envelope.

Every failure the API reports is an :class:`AppError` carrying a stable
machine-readable ``code``, a caller-safe ``message`` and an HTTP status.
Anything else that escapes a route is logged in full and answered with a
generic ``INTERNAL_ERROR`` envelope so upstream bodies, credentials and stack
traces never reach the client.
"""

from __future__ import annotations

from typing import Any, Mapping

import structlog
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

logger = structlog.get_logger(__name__)


class AppError(Exception):
    """Base class for errors that are safe to surface to API callers."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    code: str = "INTERNAL_ERROR"
    default_message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: str | None = None,
        *,
        code: str | None = None,
        status_code: int | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> None:
        self.message = message or self.default_message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code
        self.headers = dict(headers or {})
        super().__init__(self.message)

    def to_payload(self) -> dict[str, Any]:
        return error_payload(self.message, self.message, self.code)


class ValidationError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "VALIDATION_ERROR"
    default_message = "Please check your input parameters"


class Unauthenticated(AppError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "UNAUTHENTICATED"
    default_message = "Authentication required, please sign in first"


class NotFound(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "NOT_FOUND"
    default_message = "Resource not found"


class SubscriptionUnavailable(AppError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "SUBSCRIPTION_ERROR"
    default_message = "Unable to load subscription information"


class QuotaExceeded(AppError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    code = "SUBSCRIPTION_LIMIT_EXCEEDED"

    def __init__(self, plan: str, limit: int) -> None:
        self.plan = plan
        self.limit = limit
        limit_text = "unlimited" if limit == -1 else str(limit)
        super().__init__(
            f"You have used all of today's generations. Current plan ({plan.upper()}) "
            f"daily limit: {limit_text}. Upgrade your subscription for more generations."
        )

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        payload.update({"plan": self.plan, "limit": self.limit})
        return payload


class RateLimited(AppError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    code = "RATE_LIMITED"
    default_message = "Too many requests, please try again later"


class ServiceUnavailable(AppError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "SERVICE_UNAVAILABLE"
    default_message = "Image generation service unavailable"


class ServiceAuthFailed(AppError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "SERVICE_AUTH_FAILED"
    default_message = "Service authentication failed"


class ServiceBusy(AppError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    code = "SERVICE_BUSY"
    default_message = "Service busy. Please try again later."


class GenerationFailed(AppError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "GENERATION_FAILED"
    default_message = "Image generation failed"


class TimeoutFailure(AppError):
    """Base for failures caused by an upstream bound being exhausted."""

    status_code = status.HTTP_408_REQUEST_TIMEOUT
    code = "TIMEOUT"
    default_message = "The operation timed out"


class GenerationTimeout(TimeoutFailure):
    code = "GENERATION_TIMEOUT"
    default_message = "Generation timeout. Please try again."


class UpstreamTimeout(TimeoutFailure):
    code = "UPSTREAM_TIMEOUT"
    default_message = "The upstream service did not respond in time"


class DownloadTimeout(TimeoutFailure):
    code = "DOWNLOAD_TIMEOUT"
    default_message = "Download timeout"


class GenerationCancelled(AppError):
    status_code = 499
    code = "GENERATION_CANCELLED"
    default_message = "Generation cancelled because the client disconnected"


class UploadFailed(AppError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "UPLOAD_FAILED"
    default_message = "Failed to upload image"


class ImageTooLarge(AppError):
    status_code = status.HTTP_413_REQUEST_ENTITY_TOO_LARGE
    code = "IMAGE_TOO_LARGE"
    default_message = "Image too large"


class InvalidFileType(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "INVALID_FILE_TYPE"
    default_message = "Invalid file type"


class InvalidImageSource(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "INVALID_SOURCE"
    default_message = "Invalid image source"


class DownloadFailed(AppError):
    status_code = status.HTTP_502_BAD_GATEWAY
    code = "FETCH_FAILED"
    default_message = "Failed to fetch image"


class ConfigurationError(AppError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "MISSING_CONFIG"
    default_message = "Service is not configured"


class InvalidSignature(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "INVALID_SIGNATURE"
    default_message = "Invalid signature"


class PaymentProviderError(AppError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "PAYMENT_FAILED"
    default_message = "Payment processing failed, please try again later"


class InternalError(AppError):
    pass


def error_payload(error: str, message: str, code: str | None = None) -> dict[str, Any]:
    payload: dict[str, Any] = {"success": False, "error": error, "message": message}
    if code is not None:
        payload["code"] = code
    return payload


def internal_error_response() -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_payload(
            "Internal server error", "An unexpected error occurred", InternalError.code
        ),
    )


async def _handle_app_error(request: Request, exc: AppError) -> JSONResponse:
    log = logger.warning if exc.status_code < 500 else logger.error
    log(
        "api.error",
        path=request.url.path,
        code=exc.code,
        status=exc.status_code,
        message=exc.message,
        cause=repr(exc.__cause__) if exc.__cause__ else None,
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload(), headers=exc.headers)


async def _handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.info("api.request_invalid", path=request.url.path, errors=exc.errors())
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=error_payload(
            "Validation failed", "Please check your input parameters", ValidationError.code
        ),
    )


async def _handle_http_exception(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    return JSONResponse(
        status_code=exc.status_code,
        content=error_payload(message, message),
        headers=getattr(exc, "headers", None),
    )


class UnhandledErrorMiddleware(BaseHTTPMiddleware):
    """Convert exceptions no handler claimed into the generic 500 envelope."""

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        try:
            return await call_next(request)
        except Exception:
            logger.exception("api.unhandled_error", path=request.url.path, method=request.method)
            return internal_error_response()


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, _handle_app_error)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _handle_request_validation)  # type: ignore[arg-type]
    app.add_exception_handler(StarletteHTTPException, _handle_http_exception)  # type: ignore[arg-type]
    app.add_middleware(UnhandledErrorMiddleware)
