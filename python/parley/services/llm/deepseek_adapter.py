"""DeepSeek LLM adapter.

DeepSeek serves an OpenAI-compatible API at https://api.deepseek.com
(POST /chat/completions, Bearer auth, the same SSE stream format).
"""

from parley.services.llm.openai_adapter import OpenAIAdapter
from parley.services.llm.types import Provider

DEEPSEEK_BASE_URL = "https://api.deepseek.com"


class DeepSeekAdapter(OpenAIAdapter):
    """DeepSeek chat completions adapter."""

    provider = Provider.DEEPSEEK
    default_base_url = DEEPSEEK_BASE_URL
