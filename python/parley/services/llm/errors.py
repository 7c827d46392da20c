"""Provider error classification and normalization.

Every failure of a vendor call (transport error, non-2xx status, malformed
body) surfaces as a single ProviderError carrying the vendor name, a
normalized error class and the underlying cause (as __cause__).

Error classes:
- E_LLM_INVALID_KEY: Authentication failure (401/403)
- E_LLM_RATE_LIMIT: Rate limit exceeded (429)
- E_LLM_CONTEXT_TOO_LARGE: Context length exceeded
- E_LLM_TIMEOUT: Request timed out
- E_LLM_PROVIDER_DOWN: Provider unavailable (5xx, network error)
- E_LLM_BAD_RESPONSE: 2xx response whose body could not be interpreted
- E_MODEL_NOT_AVAILABLE: Model not found or disabled
"""

from enum import Enum

import httpx

from parley.logging import get_logger

logger = get_logger(__name__)


class ProviderErrorClass(str, Enum):
    """Normalized provider error classifications.

    The values double as the error codes in API responses.
    """

    INVALID_KEY = "E_LLM_INVALID_KEY"
    RATE_LIMIT = "E_LLM_RATE_LIMIT"
    CONTEXT_TOO_LARGE = "E_LLM_CONTEXT_TOO_LARGE"
    TIMEOUT = "E_LLM_TIMEOUT"
    PROVIDER_DOWN = "E_LLM_PROVIDER_DOWN"
    BAD_RESPONSE = "E_LLM_BAD_RESPONSE"
    MODEL_NOT_AVAILABLE = "E_MODEL_NOT_AVAILABLE"


class ProviderError(Exception):
    """Exception for any failed vendor call.

    Attributes:
        error_class: The normalized error classification
        message: Internal diagnostic message (never sent to API callers)
        provider: The vendor that failed
        status_code: Vendor HTTP status, when there was one
    """

    def __init__(
        self,
        error_class: ProviderErrorClass,
        message: str,
        provider: str | None = None,
        status_code: int | None = None,
    ):
        self.error_class = error_class
        self.message = message
        self.provider = provider
        self.status_code = status_code
        super().__init__(message)


def classify_provider_error(
    provider: str,
    status_code: int | None,
    json_body: dict | None,
    exception: Exception | None,
) -> ProviderErrorClass:
    """Classify a vendor failure into a normalized error class.

    Args:
        provider: Vendor name ("openai", "anthropic", "google", "deepseek", "ollama")
        status_code: HTTP status code (if available)
        json_body: Parsed JSON error response (if available)
        exception: The exception that was raised (if any)

    Returns:
        The appropriate ProviderErrorClass for this error.
    """
    if exception is not None:
        if isinstance(exception, httpx.TimeoutException):
            return ProviderErrorClass.TIMEOUT
        if isinstance(exception, httpx.TransportError):
            return ProviderErrorClass.PROVIDER_DOWN

    if status_code is None:
        return ProviderErrorClass.PROVIDER_DOWN

    if provider in ("openai", "deepseek", "ollama"):
        return _classify_openai_error(status_code, json_body)
    elif provider == "anthropic":
        return _classify_anthropic_error(status_code, json_body)
    elif provider == "google":
        return _classify_google_error(status_code, json_body)
    else:
        logger.warning("unknown_provider_for_error_classification", provider=provider)
        return ProviderErrorClass.PROVIDER_DOWN


def _error_object(json_body: dict | None) -> dict:
    if not isinstance(json_body, dict):
        return {}
    error = json_body.get("error")
    return error if isinstance(error, dict) else {}


def _classify_openai_error(status_code: int, json_body: dict | None) -> ProviderErrorClass:
    """Classify errors from OpenAI-compatible APIs (OpenAI, DeepSeek, Ollama).

    - 401 or 403 → INVALID_KEY
    - 429 → RATE_LIMIT
    - 404 → MODEL_NOT_AVAILABLE
    - 5xx → PROVIDER_DOWN
    - 400 + code context_length_exceeded / "maximum context length" → CONTEXT_TOO_LARGE
    """
    if status_code in (401, 403):
        return ProviderErrorClass.INVALID_KEY

    if status_code == 429:
        return ProviderErrorClass.RATE_LIMIT

    if status_code == 404:
        return ProviderErrorClass.MODEL_NOT_AVAILABLE

    if status_code >= 500:
        return ProviderErrorClass.PROVIDER_DOWN

    if status_code == 400:
        error = _error_object(json_body)
        error_code = str(error.get("code") or "")
        error_message = str(error.get("message") or "").lower()

        if error_code == "context_length_exceeded":
            return ProviderErrorClass.CONTEXT_TOO_LARGE
        if "maximum context length" in error_message:
            return ProviderErrorClass.CONTEXT_TOO_LARGE
        if "model" in error_message and "not found" in error_message:
            return ProviderErrorClass.MODEL_NOT_AVAILABLE

    return ProviderErrorClass.PROVIDER_DOWN


def _classify_anthropic_error(status_code: int, json_body: dict | None) -> ProviderErrorClass:
    """Classify Anthropic errors.

    - 401 or 403 → INVALID_KEY
    - 429 → RATE_LIMIT
    - 5xx, including 529 overloaded → PROVIDER_DOWN
    - 400 invalid_request_error mentioning "too long" → CONTEXT_TOO_LARGE
    - 404 → MODEL_NOT_AVAILABLE
    """
    if status_code in (401, 403):
        return ProviderErrorClass.INVALID_KEY

    if status_code == 429:
        return ProviderErrorClass.RATE_LIMIT

    if status_code == 404:
        return ProviderErrorClass.MODEL_NOT_AVAILABLE

    if status_code >= 500:
        return ProviderErrorClass.PROVIDER_DOWN

    if status_code == 400:
        error = _error_object(json_body)
        error_type = str(error.get("type") or "")
        error_message = str(error.get("message") or "").lower()

        if error_type == "invalid_request_error" and "too long" in error_message:
            return ProviderErrorClass.CONTEXT_TOO_LARGE

    return ProviderErrorClass.PROVIDER_DOWN


def _classify_google_error(status_code: int, json_body: dict | None) -> ProviderErrorClass:
    """Classify Google Generative Language errors.

    - "API_KEY_INVALID" in body, 401 or 403 → INVALID_KEY
    - 429 or "RESOURCE_EXHAUSTED" → RATE_LIMIT
    - "exceeds the maximum" → CONTEXT_TOO_LARGE
    - 404 or "model not found" → MODEL_NOT_AVAILABLE
    """
    body_str = str(json_body).lower() if json_body else ""

    if "api_key_invalid" in body_str:
        return ProviderErrorClass.INVALID_KEY

    if status_code in (401, 403):
        return ProviderErrorClass.INVALID_KEY

    if status_code == 429 or "resource_exhausted" in body_str:
        return ProviderErrorClass.RATE_LIMIT

    if "exceeds the maximum" in body_str:
        return ProviderErrorClass.CONTEXT_TOO_LARGE

    if status_code == 404 or "model not found" in body_str:
        return ProviderErrorClass.MODEL_NOT_AVAILABLE

    return ProviderErrorClass.PROVIDER_DOWN
