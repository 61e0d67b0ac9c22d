from typing import Any

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import ORJSONResponse


class AppError(Exception):
    """Base application error with consistent schema."""

    def __init__(
        self,
        message: str,
        code: str = "ERROR",
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class UnauthorizedError(AppError):
    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message, code="UNAUTHORIZED", status_code=status.HTTP_401_UNAUTHORIZED)


class NotFoundError(AppError):
    def __init__(self, message: str = "Not found"):
        super().__init__(message, code="NOT_FOUND", status_code=status.HTTP_404_NOT_FOUND)


class BadRequestError(AppError):
    def __init__(self, message: str = "Bad request", details: dict[str, Any] | None = None):
        super().__init__(message, code="BAD_REQUEST", status_code=status.HTTP_400_BAD_REQUEST, details=details)


# Input validation: rejected before any side effect.


class ValidationError(AppError):
    def __init__(self, message: str = "Invalid input", details: dict[str, Any] | None = None):
        super().__init__(message, code="VALIDATION_ERROR", status_code=status.HTTP_400_BAD_REQUEST, details=details)


class InvalidRepositoryURLError(ValidationError):
    def __init__(self, url: str):
        super().__init__("Invalid GitHub repository URL", details={"url": url})
        self.code = "INVALID_REPOSITORY_URL"


class MissingCredentialError(ValidationError):
    def __init__(self, message: str = "GitHub token is required"):
        super().__init__(message)
        self.code = "MISSING_CREDENTIAL"


class InsufficientCreditsError(AppError):
    def __init__(self, message: str = "Insufficient credits", details: dict[str, Any] | None = None):
        super().__init__(
            message,
            code="INSUFFICIENT_CREDITS",
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            details=details,
        )


class RateLimitExceededError(AppError):
    def __init__(self, limit: int, window_seconds: int):
        super().__init__(
            f"Rate limit exceeded: at most {limit} remixes per hour",
            code="RATE_LIMITED",
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            details={"limit": limit, "window_seconds": window_seconds},
        )


# Upstream (GitHub / Mercado Pago) failures.


class UpstreamAPIError(AppError):
    """Non-2xx from an external API; ``body`` is the provider's raw response text."""

    def __init__(self, status_code: int, body: str, service: str = "upstream"):
        self.upstream_status = status_code
        self.body = body
        self.service = service
        super().__init__(
            f"{service} API error [{status_code}]: {body}",
            code="UPSTREAM_ERROR",
            status_code=status.HTTP_502_BAD_GATEWAY,
            details={"service": service, "status": status_code, "body": body},
        )

    @property
    def status(self) -> int:
        return self.upstream_status


class CopyError(AppError):
    """Base for repository copy failures; wraps the upstream message when there is one."""

    code_name = "COPY_ERROR"

    def __init__(self, message: str, upstream: UpstreamAPIError | None = None):
        details: dict[str, Any] = {}
        if upstream is not None:
            details = {"status": upstream.upstream_status, "body": upstream.body}
            message = f"{message} [{upstream.upstream_status}]: {upstream.body}"
        super().__init__(message, code=self.code_name, status_code=status.HTTP_502_BAD_GATEWAY, details=details)
        self.upstream = upstream


class SourceNotFoundError(CopyError):
    code_name = "SOURCE_NOT_FOUND"


class DestinationCreateError(CopyError):
    code_name = "DESTINATION_CREATE_FAILED"


class BlobCopyError(CopyError):
    code_name = "BLOB_COPY_FAILED"


class RefUpdateError(CopyError):
    code_name = "REF_UPDATE_FAILED"


class RemixTimeoutError(AppError):
    def __init__(self, timeout_seconds: float):
        super().__init__(
            f"Remix did not finish within {timeout_seconds:g}s",
            code="REMIX_TIMEOUT",
            status_code=status.HTTP_504_GATEWAY_TIMEOUT,
        )


# Payments.


class PaymentsNotConfiguredError(AppError):
    def __init__(self, message: str = "Payments not configured"):
        super().__init__(message, code="PAYMENTS_NOT_CONFIGURED", status_code=status.HTTP_503_SERVICE_UNAVAILABLE)


class ReconciliationConflictError(AppError):
    """A transition was requested for an order that is no longer pending."""

    def __init__(self, order_id: str, current_status: str | None):
        super().__init__(
            "Payment order is no longer pending",
            code="RECONCILIATION_CONFLICT",
            status_code=status.HTTP_409_CONFLICT,
            details={"order_id": order_id, "status": current_status},
        )
        self.order_id = order_id
        self.current_status = current_status


def error_response(request: Request, exc: AppError) -> ORJSONResponse:
    body = {
        "error": {
            "message": exc.message,
            "code": exc.code,
            "details": exc.details,
        }
    }
    if hasattr(request.state, "request_id"):
        body["request_id"] = request.state.request_id
    return ORJSONResponse(status_code=exc.status_code, content=body)


async def app_exception_handler(request: Request, exc: AppError) -> ORJSONResponse:
    return error_response(request, exc)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> ORJSONResponse:
    body = {
        "error": {
            "message": "Validation error",
            "code": "VALIDATION_ERROR",
            "details": {"errors": exc.errors()},
        }
    }
    if hasattr(request.state, "request_id"):
        body["request_id"] = request.state.request_id
    return ORJSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=body,
    )


async def generic_exception_handler(request: Request, exc: Exception) -> ORJSONResponse:
    from remixhub.core.logging import get_logger
    get_logger(__name__).exception("unhandled_exception", exc_info=exc)
    body = {
        "error": {
            "message": "Internal server error",
            "code": "INTERNAL_ERROR",
            "details": {},
        }
    }
    if hasattr(request.state, "request_id"):
        body["request_id"] = request.state.request_id
    return ORJSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=body,
    )
