"""Ollama LLM adapter.

Talks to a local or self-hosted Ollama server through its OpenAI-compatible
endpoint (POST {base_url}/chat/completions, default http://localhost:11434/v1).
Ollama does not check keys; the stored credential may be any placeholder and
an empty one sends no Authorization header.
"""

from parley.services.llm.openai_adapter import OpenAIAdapter
from parley.services.llm.types import Provider

OLLAMA_BASE_URL = "http://localhost:11434/v1"


class OllamaAdapter(OpenAIAdapter):
    """Ollama chat completions adapter."""

    provider = Provider.OLLAMA
    default_base_url = OLLAMA_BASE_URL
    stream_usage = False
