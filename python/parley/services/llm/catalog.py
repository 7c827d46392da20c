"""Static model capability tables, one per vendor.

Hand-maintained reference data: context window and capability flags for
the models each adapter advertises. Nothing here is fetched live. The
ai_models table is seeded from these tables, and a chat may still target
a model that is not listed.
"""

from parley.services.llm.types import ModelInfo, Provider

OPENAI_MODELS: tuple[ModelInfo, ...] = (
    ModelInfo(
        "gpt-4",
        "GPT-4",
        8192,
        supports_functions=True,
        description="OpenAI's original GPT-4 model",
    ),
    ModelInfo(
        "gpt-4o",
        "GPT-4o",
        128000,
        supports_images=True,
        supports_functions=True,
        description="Multimodal GPT-4 class model",
    ),
    ModelInfo("gpt-3.5-turbo", "GPT-3.5 Turbo", 4096, supports_functions=True),
)

ANTHROPIC_MODELS: tuple[ModelInfo, ...] = (
    ModelInfo(
        "claude-3-opus-20240229",
        "Claude 3 Opus",
        200000,
        supports_images=True,
        supports_functions=True,
        description="Most capable Claude 3 model",
    ),
    ModelInfo(
        "claude-3-sonnet-20240229",
        "Claude 3 Sonnet",
        200000,
        supports_images=True,
        supports_functions=True,
    ),
    ModelInfo(
        "claude-3-haiku-20240307",
        "Claude 3 Haiku",
        200000,
        supports_images=True,
        supports_functions=True,
        description="Fastest Claude 3 model",
    ),
)

GOOGLE_MODELS: tuple[ModelInfo, ...] = (
    ModelInfo("gemini-pro", "Gemini Pro", 32768, supports_functions=True),
    ModelInfo("gemini-pro-vision", "Gemini Pro Vision", 16384, supports_images=True),
)

DEEPSEEK_MODELS: tuple[ModelInfo, ...] = (
    ModelInfo("deepseek-chat", "DeepSeek Chat", 64000, supports_functions=True),
    ModelInfo("deepseek-reasoner", "DeepSeek Reasoner", 64000),
)

OLLAMA_MODELS: tuple[ModelInfo, ...] = (
    ModelInfo("llama3", "Llama 3", 8192),
    ModelInfo("mistral", "Mistral", 32768),
)

MODEL_CATALOG: dict[Provider, tuple[ModelInfo, ...]] = {
    Provider.OPENAI: OPENAI_MODELS,
    Provider.ANTHROPIC: ANTHROPIC_MODELS,
    Provider.GOOGLE: GOOGLE_MODELS,
    Provider.DEEPSEEK: DEEPSEEK_MODELS,
    Provider.OLLAMA: OLLAMA_MODELS,
}


def list_models(provider: Provider) -> list[ModelInfo]:
    """All advertised models for a vendor, in catalogue order."""
    return list(MODEL_CATALOG[provider])


def get_model_info(provider: Provider, model_id: str) -> ModelInfo | None:
    """Capability descriptor for one model, or None if it is not catalogued."""
    for info in MODEL_CATALOG[provider]:
        if info.id == model_id:
            return info
    return None
