"""Shared type definitions for the provider layer.

- Provider: the closed set of supported vendors
- ChatMessage: provider-agnostic conversation turn
- CompletionRequest: request to a provider adapter
- CompletionResult: complete response from a non-streaming call
- CompletionChunk: single chunk from a streaming call
- ModelInfo: static capability descriptor for a vendor model

Streaming invariants:
- Chunks with done=False MUST have tokens_used=None and finish_reason=None
- Exactly ONE terminal chunk with done=True ends every successful stream
- The terminal chunk MAY carry tokens_used and finish_reason
"""

from dataclasses import dataclass
from enum import Enum
from typing import Literal

from parley.errors import ApiErrorCode, InvalidRequestError


class Provider(str, Enum):
    """Supported LLM vendors. Values are the case-sensitive wire strings."""

    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GOOGLE = "google"
    DEEPSEEK = "deepseek"
    OLLAMA = "ollama"


def parse_provider(value: str) -> Provider:
    """Map a provider string to the Provider enum.

    Matching is exact: "OpenAI" and "bedrock" are both rejected.

    Raises:
        InvalidRequestError: E_PROVIDER_INVALID for unknown strings.
    """
    try:
        return Provider(value)
    except ValueError:
        valid = ", ".join(p.value for p in Provider)
        raise InvalidRequestError(
            ApiErrorCode.E_PROVIDER_INVALID,
            f"Unknown provider: {value!r}. Must be one of: {valid}",
        ) from None


@dataclass(frozen=True)
class ChatMessage:
    """Provider-agnostic conversation turn."""

    role: Literal["system", "user", "assistant"]
    content: str


@dataclass(frozen=True)
class CompletionRequest:
    """Request to a provider adapter.

    Attributes:
        model: Vendor model identifier (e.g., "gpt-4", "claude-3-opus-20240229")
        messages: Ordered conversation, oldest first
        temperature: Sampling temperature, None uses the vendor default
        max_tokens: Completion bound, None uses the vendor default
    """

    model: str
    messages: list[ChatMessage]
    temperature: float | None = None
    max_tokens: int | None = None


@dataclass(frozen=True)
class CompletionResult:
    """Normalized completion returned by every adapter."""

    content: str
    model: str
    tokens_used: int | None = None
    finish_reason: str | None = None


@dataclass(frozen=True)
class CompletionChunk:
    """Single chunk from a streaming response."""

    content: str
    done: bool
    model: str
    tokens_used: int | None = None
    finish_reason: str | None = None

    def __post_init__(self):
        """Validate streaming invariants."""
        if not self.done and (self.tokens_used is not None or self.finish_reason is not None):
            raise ValueError("Non-terminal chunks (done=False) must not carry usage")


@dataclass(frozen=True)
class ModelInfo:
    """Capability descriptor for one vendor model."""

    id: str
    display_name: str
    context_window: int
    supports_streaming: bool = True
    supports_images: bool = False
    supports_functions: bool = False
    description: str | None = None
