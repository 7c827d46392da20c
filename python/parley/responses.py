"""API response envelope helpers and exception handlers.

All API responses use a consistent envelope:
- Success: { "data": ... }
- Error: { "error": { "code": "E_...", "message": "...", "request_id": "..." } }

Provider failures additionally carry "provider". Vendor error text is never
copied into the response body; it is logged where the failure is classified.
"""

from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse

from parley.errors import ApiError, ApiErrorCode
from parley.logging import get_logger, get_request_id
from parley.services.llm.errors import ProviderError, ProviderErrorClass

logger = get_logger(__name__)

# User-facing text per provider error class
PROVIDER_ERROR_MESSAGES: dict[ProviderErrorClass, str] = {
    ProviderErrorClass.INVALID_KEY: "The provider rejected the configured API key",
    ProviderErrorClass.RATE_LIMIT: "The provider rate limit was exceeded",
    ProviderErrorClass.CONTEXT_TOO_LARGE: "The conversation is too long for this model",
    ProviderErrorClass.TIMEOUT: "The provider did not respond in time",
    ProviderErrorClass.PROVIDER_DOWN: "The provider is unavailable",
    ProviderErrorClass.BAD_RESPONSE: "The provider returned an unreadable response",
    ProviderErrorClass.MODEL_NOT_AVAILABLE: "The requested model is not available",
}


def success_response(data: Any) -> dict[str, Any]:
    """Create a success response envelope."""
    return {"data": data}


def error_response(
    code: ApiErrorCode | str, message: str, request_id: str | None = None, **extra: Any
) -> dict[str, Any]:
    """Create an error response envelope.

    Args:
        code: The error code (enum value or raw code string).
        message: Human-readable error message.
        request_id: Optional request ID for correlation (auto-populated from context if None).
        **extra: Additional fields to include in the error object.

    Returns:
        Dict with "error" key containing code, message, and request_id.
    """
    if request_id is None:
        request_id = get_request_id()

    error: dict[str, Any] = {
        "code": code.value if isinstance(code, ApiErrorCode) else code,
        "message": message,
        **extra,
    }
    if request_id:
        error["request_id"] = request_id

    return {"error": error}


def provider_error_status(exc: ProviderError) -> int:
    """HTTP status for a provider failure: 504 for timeouts, 502 otherwise."""
    if exc.error_class == ProviderErrorClass.TIMEOUT:
        return 504
    return 502


def provider_error_body(exc: ProviderError, request_id: str | None = None) -> dict[str, Any]:
    """Error envelope for a provider failure, without vendor text."""
    message = PROVIDER_ERROR_MESSAGES.get(exc.error_class, "The provider request failed")
    return error_response(exc.error_class.value, message, request_id, provider=exc.provider)


async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    """Handle ApiError exceptions and return proper JSON response."""
    return JSONResponse(
        status_code=exc.status_code,
        content=error_response(exc.code, exc.message),
    )


async def provider_error_handler(request: Request, exc: ProviderError) -> JSONResponse:
    """Handle ProviderError exceptions with a vendor-tagged 502/504."""
    return JSONResponse(
        status_code=provider_error_status(exc),
        content=provider_error_body(exc),
    )


async def http_exception_handler(request: Request, exc: Any) -> JSONResponse:
    """Handle FastAPI HTTPException and return proper JSON response."""
    status_to_code = {
        400: ApiErrorCode.E_INVALID_REQUEST,
        401: ApiErrorCode.E_UNAUTHENTICATED,
        403: ApiErrorCode.E_FORBIDDEN,
        404: ApiErrorCode.E_NOT_FOUND,
        405: ApiErrorCode.E_INVALID_REQUEST,
        422: ApiErrorCode.E_INVALID_REQUEST,
    }
    code = status_to_code.get(exc.status_code, ApiErrorCode.E_INTERNAL)
    message = str(exc.detail) if exc.detail else "An error occurred"
    return JSONResponse(
        status_code=exc.status_code,
        content=error_response(code, message),
    )


async def validation_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle request validation errors (missing fields, wrong types, bad JSON)."""
    return JSONResponse(
        status_code=400,
        content=error_response(ApiErrorCode.E_INVALID_REQUEST, "Invalid request body"),
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unhandled exceptions and return 500 with E_INTERNAL.

    Logs the exception server-side but never leaks details to client.
    """
    logger.exception("unhandled_exception", error_type=type(exc).__name__)

    return JSONResponse(
        status_code=500,
        content=error_response(ApiErrorCode.E_INTERNAL, "Internal server error"),
    )
