"""API error definitions.

All API errors are defined here with their corresponding HTTP status codes.
Provider failures have their own exception type (see parley.services.llm.errors)
and are mapped to 502/504 by the response layer.
"""

from enum import Enum


class ApiErrorCode(str, Enum):
    """Standardized error codes for the API.

    Format: E_CATEGORY_NAME
    """

    # Authentication errors (401)
    E_UNAUTHENTICATED = "E_UNAUTHENTICATED"

    # Authorization errors (403)
    E_FORBIDDEN = "E_FORBIDDEN"

    # Not found errors (404)
    E_NOT_FOUND = "E_NOT_FOUND"
    E_CHAT_NOT_FOUND = "E_CHAT_NOT_FOUND"
    E_MESSAGE_NOT_FOUND = "E_MESSAGE_NOT_FOUND"
    E_KEY_NOT_FOUND = "E_KEY_NOT_FOUND"
    E_MODEL_NOT_FOUND = "E_MODEL_NOT_FOUND"

    # Validation errors (400)
    E_INVALID_REQUEST = "E_INVALID_REQUEST"
    E_PROVIDER_INVALID = "E_PROVIDER_INVALID"
    E_NO_DEFAULT_KEY = "E_NO_DEFAULT_KEY"
    E_KEY_INVALID_FORMAT = "E_KEY_INVALID_FORMAT"
    E_FEATURE_INVALID = "E_FEATURE_INVALID"

    # Server errors
    E_PERSISTENCE_FAILED = "E_PERSISTENCE_FAILED"  # 500
    E_INTERNAL = "E_INTERNAL"  # 500
    E_AUTH_UNAVAILABLE = "E_AUTH_UNAVAILABLE"  # 503


# Error code to HTTP status mapping
ERROR_CODE_TO_STATUS: dict[ApiErrorCode, int] = {
    ApiErrorCode.E_UNAUTHENTICATED: 401,
    ApiErrorCode.E_FORBIDDEN: 403,
    ApiErrorCode.E_NOT_FOUND: 404,
    ApiErrorCode.E_CHAT_NOT_FOUND: 404,
    ApiErrorCode.E_MESSAGE_NOT_FOUND: 404,
    ApiErrorCode.E_KEY_NOT_FOUND: 404,
    ApiErrorCode.E_MODEL_NOT_FOUND: 404,
    ApiErrorCode.E_INVALID_REQUEST: 400,
    ApiErrorCode.E_PROVIDER_INVALID: 400,
    ApiErrorCode.E_NO_DEFAULT_KEY: 400,
    ApiErrorCode.E_KEY_INVALID_FORMAT: 400,
    ApiErrorCode.E_FEATURE_INVALID: 400,
    ApiErrorCode.E_PERSISTENCE_FAILED: 500,
    ApiErrorCode.E_INTERNAL: 500,
    ApiErrorCode.E_AUTH_UNAVAILABLE: 503,
}


class ApiError(Exception):
    """Base exception for API errors.

    Attributes:
        code: The error code enum value
        message: Human-readable error message
        status_code: HTTP status code (derived from code)
    """

    def __init__(self, code: ApiErrorCode, message: str):
        self.code = code
        self.message = message
        self.status_code = ERROR_CODE_TO_STATUS.get(code, 500)
        super().__init__(message)


class NotFoundError(ApiError):
    """Resource not found error."""

    def __init__(self, code: ApiErrorCode = ApiErrorCode.E_NOT_FOUND, message: str = "Not found"):
        super().__init__(code, message)


class InvalidRequestError(ApiError):
    """Invalid request error (client error, no retry implied)."""

    def __init__(
        self, code: ApiErrorCode = ApiErrorCode.E_INVALID_REQUEST, message: str = "Invalid request"
    ):
        super().__init__(code, message)


class PersistenceError(ApiError):
    """Storage round-trip failure.

    Attributes:
        step: The flow step that was writing when storage failed.
    """

    def __init__(self, message: str = "Failed to persist data", step: str | None = None):
        self.step = step
        super().__init__(ApiErrorCode.E_PERSISTENCE_FAILED, message)
