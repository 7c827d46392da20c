"""Abstract base class for provider adapters.

Rules for every adapter:
- Async HTTP through the shared httpx.AsyncClient, bounded by a timeout
- No retries
- No DB access
- No logging of request/response bodies or keys
- Vendor-specific code only builds requests and parses responses
  (_send / _send_stream); the public complete() / stream_complete()
  wrap them, classify any failure into a ProviderError and emit the
  llm.request.* events
"""

import time
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from typing import Any, ClassVar

import httpx

from parley.logging import get_logger
from parley.services.llm import catalog
from parley.services.llm.errors import ProviderError, ProviderErrorClass, classify_provider_error
from parley.services.llm.types import (
    CompletionChunk,
    CompletionRequest,
    CompletionResult,
    ModelInfo,
    Provider,
)
from parley.services.redact import hash_text, safe_kv

logger = get_logger(__name__)

DEFAULT_TIMEOUT_S = 45.0
DEFAULT_CONNECT_TIMEOUT_S = 10.0


def sse_data(line: str) -> str | None:
    """Return the payload of an SSE "data:" line, or None for any other line."""
    if not line.startswith("data:"):
        return None
    return line[5:].lstrip()


class ProviderAdapter(ABC):
    """Base class for LLM vendor adapters.

    An adapter instance is bound to one API key and lives for one request.

    Class attributes:
        provider: The vendor this adapter talks to.
        default_base_url: Endpoint root used when no base URL is configured.
    """

    provider: ClassVar[Provider]
    default_base_url: ClassVar[str]

    def __init__(
        self,
        client: httpx.AsyncClient,
        api_key: str,
        *,
        base_url: str | None = None,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        connect_timeout_s: float = DEFAULT_CONNECT_TIMEOUT_S,
    ):
        """Initialize adapter with shared HTTP client and a credential.

        Args:
            client: Shared httpx.AsyncClient for connection pooling.
            api_key: Decrypted vendor API key for this request.
            base_url: Override for the vendor endpoint root.
            timeout_s: Total timeout for each vendor call.
            connect_timeout_s: Connect timeout for each vendor call.
        """
        self._client = client
        self._api_key = api_key
        self._base_url = (base_url or self.default_base_url).rstrip("/")
        self._timeout = httpx.Timeout(timeout_s, connect=connect_timeout_s)

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def complete(self, req: CompletionRequest) -> CompletionResult:
        """Non-streaming completion with error normalization.

        Raises:
            ProviderError: On transport failure, non-2xx status or malformed body.
        """
        base = self._log_fields(req, streaming=False)
        logger.info("llm.request.started", **safe_kv(**base))
        start = time.monotonic()

        try:
            result = await self._send(req)
        except Exception as e:
            error = self._wrap_failure(e, base, start)
            if error is e:
                raise
            raise error from e

        logger.info(
            "llm.request.finished",
            **safe_kv(
                **base,
                outcome="success",
                latency_ms=_elapsed_ms(start),
                tokens_total=result.tokens_used,
                finish_reason=result.finish_reason,
                content_chars=len(result.content),
            ),
        )
        return result

    async def stream_complete(self, req: CompletionRequest) -> AsyncIterator[CompletionChunk]:
        """Streaming completion with error normalization.

        Yields chunks until exactly one terminal chunk (done=True). The
        sequence is finite and cannot be restarted.

        Raises:
            ProviderError: On transport failure, non-2xx status, malformed
                event or a stream that ends without a terminal marker.
        """
        base = self._log_fields(req, streaming=True)
        logger.info("llm.request.started", **safe_kv(**base))
        start = time.monotonic()

        try:
            async for chunk in self._send_stream(req):
                if chunk.done:
                    logger.info(
                        "llm.request.finished",
                        **safe_kv(
                            **base,
                            outcome="success",
                            latency_ms=_elapsed_ms(start),
                            tokens_total=chunk.tokens_used,
                            finish_reason=chunk.finish_reason,
                        ),
                    )
                yield chunk
        except Exception as e:
            error = self._wrap_failure(e, base, start)
            if error is e:
                raise
            raise error from e

    def list_models(self) -> list[ModelInfo]:
        """Models this vendor advertises, from the static catalogue."""
        return catalog.list_models(self.provider)

    def get_model_info(self, model_id: str) -> ModelInfo | None:
        """Capability descriptor for one model, or None if not catalogued."""
        return catalog.get_model_info(self.provider, model_id)

    # ------------------------------------------------------------------
    # Vendor-specific hooks
    # ------------------------------------------------------------------

    @abstractmethod
    async def _send(self, req: CompletionRequest) -> CompletionResult:
        """Perform the vendor call and parse the response.

        May raise raw httpx errors, ValueError/KeyError/TypeError on bad
        bodies, or ProviderError directly.
        """

    @abstractmethod
    def _send_stream(self, req: CompletionRequest) -> AsyncIterator[CompletionChunk]:
        """Perform the streaming vendor call and yield normalized chunks.

        Must stop right after yielding the terminal chunk, and raise
        _stream_ended_early() if the vendor stream closes without one.
        """

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _url(self, path: str) -> str:
        return f"{self._base_url}/{path.lstrip('/')}"

    def _json_object(self, response: httpx.Response) -> dict[str, Any]:
        """Decode a 2xx response body that must be a JSON object."""
        data = response.json()
        if not isinstance(data, dict):
            raise ProviderError(
                ProviderErrorClass.BAD_RESPONSE,
                f"Expected JSON object, got {type(data).__name__}",
                provider=self.provider.value,
            )
        return data

    async def _raise_for_stream_status(self, response: httpx.Response) -> None:
        """raise_for_status for a streamed response, reading the error body first."""
        if response.is_error:
            await response.aread()
        response.raise_for_status()

    def _stream_ended_early(self) -> ProviderError:
        return ProviderError(
            ProviderErrorClass.PROVIDER_DOWN,
            f"{self.provider.value} stream ended without a terminal event",
            provider=self.provider.value,
        )

    def _log_fields(self, req: CompletionRequest, *, streaming: bool) -> dict:
        return {
            "provider": self.provider.value,
            "model": req.model,
            "streaming": streaming,
            "message_count": len(req.messages),
            "message_chars": sum(len(m.content) for m in req.messages),
            "last_message_sha256": hash_text(req.messages[-1].content) if req.messages else None,
        }

    def _wrap_failure(self, exc: Exception, base: dict, start: float) -> ProviderError:
        """Classify a failure, log it, and return the ProviderError to raise."""
        provider = self.provider.value
        status_code: int | None = None

        if isinstance(exc, ProviderError):
            error = exc
            status_code = exc.status_code
        elif isinstance(exc, httpx.HTTPStatusError):
            status_code = exc.response.status_code
            json_body = _safe_parse_json(exc.response)
            error = ProviderError(
                classify_provider_error(provider, status_code, json_body, None),
                f"Provider returned HTTP {status_code}",
                provider=provider,
                status_code=status_code,
            )
        elif isinstance(exc, httpx.TimeoutException):
            error = ProviderError(ProviderErrorClass.TIMEOUT, "Request timed out", provider=provider)
        elif isinstance(exc, httpx.HTTPError):
            error = ProviderError(
                classify_provider_error(provider, None, None, exc),
                f"Transport error: {type(exc).__name__}",
                provider=provider,
            )
        elif isinstance(exc, (ValueError, KeyError, TypeError, AttributeError)):
            error = ProviderError(
                ProviderErrorClass.BAD_RESPONSE,
                f"Malformed provider response: {type(exc).__name__}",
                provider=provider,
            )
        else:
            error = ProviderError(
                ProviderErrorClass.PROVIDER_DOWN,
                f"Unexpected error: {type(exc).__name__}",
                provider=provider,
            )

        logger.error(
            "llm.request.failed",
            **safe_kv(
                **base,
                outcome="error",
                error_class=error.error_class.value,
                status_code=status_code,
                latency_ms=_elapsed_ms(start),
                error_detail=error.message,
            ),
        )
        return error


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


def _safe_parse_json(response: httpx.Response) -> dict | None:
    """Parse an error body, returning None when it is absent or not JSON."""
    try:
        data = response.json()
    except (ValueError, httpx.ResponseNotRead):
        return None
    return data if isinstance(data, dict) else None
