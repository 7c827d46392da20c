"""Provider registry: vendor enum to adapter dispatch.

A registry is built per completion request from the credentials resolved
for that request, so decrypted keys never outlive the request and adapters
are never shared between users.
"""

from collections.abc import Mapping

import httpx

from parley.config import Settings
from parley.services.llm import catalog
from parley.services.llm.adapter import ProviderAdapter
from parley.services.llm.anthropic_adapter import AnthropicAdapter
from parley.services.llm.deepseek_adapter import DeepSeekAdapter
from parley.services.llm.google_adapter import GoogleAdapter
from parley.services.llm.ollama_adapter import OllamaAdapter
from parley.services.llm.openai_adapter import OpenAIAdapter
from parley.services.llm.types import ModelInfo, Provider

# Exhaustive: every Provider member must appear here (checked in tests)
ADAPTER_CLASSES: dict[Provider, type[ProviderAdapter]] = {
    Provider.OPENAI: OpenAIAdapter,
    Provider.ANTHROPIC: AnthropicAdapter,
    Provider.GOOGLE: GoogleAdapter,
    Provider.DEEPSEEK: DeepSeekAdapter,
    Provider.OLLAMA: OllamaAdapter,
}


def base_url_for(provider: Provider, settings: Settings) -> str:
    """Configured endpoint root for a vendor."""
    return {
        Provider.OPENAI: settings.openai_base_url,
        Provider.ANTHROPIC: settings.anthropic_base_url,
        Provider.GOOGLE: settings.google_base_url,
        Provider.DEEPSEEK: settings.deepseek_base_url,
        Provider.OLLAMA: settings.ollama_base_url,
    }[provider]


def build_adapter(
    provider: Provider,
    api_key: str,
    *,
    client: httpx.AsyncClient,
    settings: Settings,
) -> ProviderAdapter:
    """Construct the adapter for one vendor, bound to one credential."""
    adapter_cls = ADAPTER_CLASSES[provider]
    return adapter_cls(
        client,
        api_key,
        base_url=base_url_for(provider, settings),
        timeout_s=settings.llm_timeout_s,
        connect_timeout_s=settings.llm_connect_timeout_s,
    )


class ProviderRegistry:
    """Holds one adapter per vendor for a given credential set.

    Usage:
        registry = ProviderRegistry({Provider.OPENAI: api_key}, client=client, settings=settings)
        adapter = registry.get(Provider.OPENAI)
        result = await adapter.complete(request)
    """

    def __init__(
        self,
        credentials: Mapping[Provider, str],
        *,
        client: httpx.AsyncClient,
        settings: Settings,
    ):
        self._adapters: dict[Provider, ProviderAdapter] = {
            provider: build_adapter(provider, api_key, client=client, settings=settings)
            for provider, api_key in credentials.items()
        }

    def get(self, provider: Provider) -> ProviderAdapter | None:
        """Adapter for a vendor, or None if no credential was supplied for it."""
        return self._adapters.get(provider)

    def providers(self) -> list[Provider]:
        """Vendors this registry holds adapters for."""
        return list(self._adapters)

    @staticmethod
    def list_models(provider: Provider) -> list[ModelInfo]:
        return catalog.list_models(provider)

    @staticmethod
    def get_model_info(provider: Provider, model_id: str) -> ModelInfo | None:
        return catalog.get_model_info(provider, model_id)
