# ─────────────────────────────────────────────────────────────────────────────
# Error Taxonomy + FastAPI Exception Handlers
# ─────────────────────────────────────────────────────────────────────────────


from enum import StrEnum

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from gateway.config import Settings, get_settings
from gateway.messages import user_message

logger = structlog.get_logger(__name__)


class ErrorCategory(StrEnum):
    """User-facing error categories.

    rejected_by_quota is a policy outcome, never raised.
    """

    invalid_input = "invalid_input"
    configuration = "configuration"
    auth_failure = "auth_failure"
    upstream_overloaded = "upstream_overloaded"
    upstream_error = "upstream_error"
    malformed_upstream_response = "malformed_upstream_response"
    upstream_timeout = "upstream_timeout"
    internal_error = "internal_error"
    rejected_by_quota = "rejected_by_quota"


# ── Exception hierarchy ──────────────────────────────────────────────────────


class GatewayError(Exception):
    """Base exception for every non-success proxy outcome.

    ``message`` is operator-facing (logged). The response body carries only
    the localized text looked up by ``message_key``.
    """

    category: ErrorCategory = ErrorCategory.internal_error

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        message_key: str | None = None,
        upstream_status: int | None = None,
    ):
        self.message = message
        self.status_code = status_code
        self.message_key = message_key or self.category.value
        self.upstream_status = upstream_status
        super().__init__(message)


class InvalidInputError(GatewayError):
    """Client sent something the gateway or the upstream refuses."""

    category = ErrorCategory.invalid_input

    def __init__(
        self,
        reason: str,
        message_key: str | None = None,
        upstream_status: int | None = None,
    ):
        super().__init__(
            reason,
            status_code=upstream_status or 400,
            message_key=message_key,
            upstream_status=upstream_status,
        )


class ConfigurationError(GatewayError):
    """Operator error: the gateway cannot serve this request as configured."""

    category = ErrorCategory.configuration

    def __init__(self, setting: str):
        super().__init__(f"Required setting '{setting}' is not configured", status_code=500)


class UpstreamAuthError(GatewayError):
    """Upstream rejected the gateway's credential."""

    category = ErrorCategory.auth_failure

    def __init__(self, upstream_status: int = 401):
        super().__init__(
            f"Upstream rejected credentials (HTTP {upstream_status})",
            status_code=upstream_status,
            upstream_status=upstream_status,
        )


class UpstreamOverloadedError(GatewayError):
    """Upstream is rate limiting the gateway. Retry later."""

    category = ErrorCategory.upstream_overloaded

    def __init__(self, upstream_status: int = 429):
        super().__init__(
            f"Upstream is overloaded (HTTP {upstream_status})",
            status_code=upstream_status,
            upstream_status=upstream_status,
        )


class UpstreamHTTPError(GatewayError):
    """Any other non-2xx upstream status, or a transport failure (502)."""

    category = ErrorCategory.upstream_error

    def __init__(self, upstream_status: int | None, reason: str = ""):
        status = upstream_status or 502
        detail = f"HTTP {upstream_status}" if upstream_status else reason or "transport failure"
        super().__init__(
            f"Upstream request failed ({detail})",
            status_code=status,
            upstream_status=upstream_status,
        )


class MalformedUpstreamResponseError(GatewayError):
    """Upstream returned success but broke the response contract."""

    category = ErrorCategory.malformed_upstream_response

    def __init__(self, reason: str):
        super().__init__(f"Malformed upstream response: {reason}", status_code=502)


class UpstreamTimeoutError(GatewayError):
    """Upstream call exceeded the configured deadline. Never retried."""

    category = ErrorCategory.upstream_timeout

    def __init__(self, timeout_s: float):
        super().__init__(f"Upstream call timed out after {timeout_s}s", status_code=504)


# ── Handler registration ────────────────────────────────────────────────────


def _settings(request: Request) -> Settings:
    return getattr(request.app.state, "settings", None) or get_settings()


def error_body(category: ErrorCategory, message: str, error_type: str) -> dict[str, str]:
    return {"error": message, "category": category.value, "type": error_type}


def register_exception_handlers(app: FastAPI) -> None:
    """Register all gateway exception handlers on the FastAPI app.

    Routes raise GatewayError subclasses; these handlers catch them
    and return structured JSON -- no inline try/except in endpoints.
    """

    @app.exception_handler(GatewayError)
    async def gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
        log = logger.error if exc.status_code >= 500 else logger.warning
        log(
            "gateway_error",
            error=exc.message,
            category=exc.category.value,
            error_type=type(exc).__name__,
            upstream_status=exc.upstream_status,
            path=request.url.path,
        )
        settings = _settings(request)
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(
                exc.category,
                user_message(exc.message_key, settings.message_locale),
                type(exc).__name__,
            ),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Malformed request bodies are invalid_input (400), not FastAPI's 422."""
        logger.warning(
            "request_validation_failed",
            path=request.url.path,
            errors=[f"{'.'.join(map(str, e['loc']))}: {e['msg']}" for e in exc.errors()],
        )
        settings = _settings(request)
        return JSONResponse(
            status_code=400,
            content=error_body(
                ErrorCategory.invalid_input,
                user_message(ErrorCategory.invalid_input.value, settings.message_locale),
                "InvalidInputError",
            ),
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        settings = _settings(request)
        if exc.status_code == 404:
            content = {"error": user_message("not_found", settings.message_locale)}
        else:
            content = {"error": str(exc.detail)}
        return JSONResponse(status_code=exc.status_code, content=content, headers=exc.headers)

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error("unhandled_error", error=str(exc), path=request.url.path, exc_info=True)
        settings = _settings(request)
        content = error_body(
            ErrorCategory.internal_error,
            user_message(ErrorCategory.internal_error.value, settings.message_locale),
            "UnhandledError",
        )
        if settings.is_development:
            content["details"] = str(exc)
        return JSONResponse(status_code=500, content=content)


def quota_rejection_response(message: str, reset_time: str, retry_after_seconds: int) -> JSONResponse:
    """429 with a Retry-After header telling the client when the window resets."""
    return JSONResponse(
        status_code=429,
        content={
            "error": message,
            "category": ErrorCategory.rejected_by_quota.value,
            "resetTime": reset_time,
        },
        headers={"Retry-After": str(retry_after_seconds)},
    )
