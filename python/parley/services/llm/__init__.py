"""Provider layer for vendor-agnostic chat completions.

Calls OpenAI, Anthropic, Google Gemini, DeepSeek and Ollama models through
one interface:

- Provider adapters with async support (non-streaming + streaming)
- Error classification and normalization into ProviderError
- Static model catalogues per vendor
- A per-request registry mapping Provider to a key-bound adapter

Usage:
    from parley.services.llm import ChatMessage, CompletionRequest, Provider, ProviderRegistry

    registry = ProviderRegistry({Provider.OPENAI: "sk-..."}, client=client, settings=settings)
    request = CompletionRequest(
        model="gpt-4",
        messages=[ChatMessage(role="user", content="Hello!")],
        max_tokens=100,
    )
    result = await registry.get(Provider.OPENAI).complete(request)

Adapter rules:
- Async using httpx.AsyncClient, with a bounded timeout
- No retries
- No DB access
- No logging of request/response bodies
"""

from parley.services.llm.adapter import ProviderAdapter
from parley.services.llm.errors import ProviderError, ProviderErrorClass, classify_provider_error
from parley.services.llm.registry import ADAPTER_CLASSES, ProviderRegistry, build_adapter
from parley.services.llm.types import (
    ChatMessage,
    CompletionChunk,
    CompletionRequest,
    CompletionResult,
    ModelInfo,
    Provider,
    parse_provider,
)

__all__ = [
    # Core types
    "Provider",
    "parse_provider",
    "ChatMessage",
    "CompletionRequest",
    "CompletionResult",
    "CompletionChunk",
    "ModelInfo",
    # Adapters
    "ProviderAdapter",
    "ADAPTER_CLASSES",
    "build_adapter",
    "ProviderRegistry",
    # Errors
    "ProviderError",
    "ProviderErrorClass",
    "classify_provider_error",
]
