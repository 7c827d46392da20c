"""OpenAI LLM adapter implementation.

- Endpoint: POST {base_url}/chat/completions (base_url defaults to https://api.openai.com/v1)
- Headers: Authorization: Bearer <key>, Content-Type: application/json
- Streaming: Server-Sent Events with data: {...} lines
- Terminal event: data: [DONE]
- Usage arrives in a final chunk with empty choices when stream_options.include_usage is set

Request body:
{
  "model": "<model>",
  "messages": [
    {"role": "system", "content": "..."},
    {"role": "user", "content": "..."},
    {"role": "assistant", "content": "..."}
  ],
  "max_tokens": 1024,     # only when bounded
  "temperature": 0.7,     # only when set
  "stream": false
}

Response (non-stream) - extract:
{
  "model": "gpt-4-0613",
  "choices": [{"message": {"content": "<output_text>"}, "finish_reason": "stop"}],
  "usage": {"prompt_tokens": 100, "completion_tokens": 50, "total_tokens": 150}
}

- content = choices[0].message.content ("" when there are no choices)
- model = response model (falls back to the requested model)
- tokens_used = usage.total_tokens
- finish_reason = choices[0].finish_reason

DeepSeek and Ollama expose the same wire format and subclass this adapter.
"""

import json
from collections.abc import AsyncIterator
from typing import Any

from parley.services.llm.adapter import ProviderAdapter, sse_data
from parley.services.llm.types import (
    ChatMessage,
    CompletionChunk,
    CompletionRequest,
    CompletionResult,
    Provider,
)

OPENAI_BASE_URL = "https://api.openai.com/v1"


class OpenAIAdapter(ProviderAdapter):
    """OpenAI chat completions adapter.

    OpenAI uses the same role names as ChatMessage, so turns map 1:1.
    """

    provider = Provider.OPENAI
    default_base_url = OPENAI_BASE_URL

    # Whether to ask for a usage chunk at the end of a stream
    stream_usage = True

    async def _send(self, req: CompletionRequest) -> CompletionResult:
        response = await self._client.post(
            self._url("chat/completions"),
            headers=self._build_headers(),
            json=self._build_request_body(req, stream=False),
            timeout=self._timeout,
        )
        response.raise_for_status()

        return self._parse_response(self._json_object(response), req)

    async def _send_stream(self, req: CompletionRequest) -> AsyncIterator[CompletionChunk]:
        async with self._client.stream(
            "POST",
            self._url("chat/completions"),
            headers=self._build_headers(),
            json=self._build_request_body(req, stream=True),
            timeout=self._timeout,
        ) as response:
            await self._raise_for_stream_status(response)

            model = req.model
            tokens_used: int | None = None
            finish_reason: str | None = None

            async for line in response.aiter_lines():
                data_str = sse_data(line)
                if data_str is None:
                    continue

                if data_str == "[DONE]":
                    yield CompletionChunk(
                        content="",
                        done=True,
                        model=model,
                        tokens_used=tokens_used,
                        finish_reason=finish_reason,
                    )
                    return

                data = json.loads(data_str)
                model = data.get("model") or model

                usage = data.get("usage")
                if usage:
                    tokens_used = usage.get("total_tokens")

                choices = data.get("choices") or []
                if not choices:
                    continue

                choice = choices[0]
                finish_reason = choice.get("finish_reason") or finish_reason
                delta_text = (choice.get("delta") or {}).get("content") or ""
                if delta_text:
                    yield CompletionChunk(content=delta_text, done=False, model=model)

            raise self._stream_ended_early()

    def _build_headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def _build_request_body(self, req: CompletionRequest, stream: bool) -> dict[str, Any]:
        body: dict[str, Any] = {
            "model": req.model,
            "messages": [self._message_to_wire(m) for m in req.messages],
            "stream": stream,
        }

        if req.max_tokens is not None:
            body["max_tokens"] = req.max_tokens
        if req.temperature is not None:
            body["temperature"] = req.temperature
        if stream and self.stream_usage:
            body["stream_options"] = {"include_usage": True}

        return body

    def _message_to_wire(self, message: ChatMessage) -> dict[str, str]:
        return {"role": message.role, "content": message.content}

    def _parse_response(self, data: dict[str, Any], req: CompletionRequest) -> CompletionResult:
        content = ""
        finish_reason = None

        choices = data.get("choices") or []
        if choices:
            choice = choices[0]
            content = (choice.get("message") or {}).get("content") or ""
            finish_reason = choice.get("finish_reason")

        usage = data.get("usage") or {}

        return CompletionResult(
            content=content,
            model=data.get("model") or req.model,
            tokens_used=usage.get("total_tokens"),
            finish_reason=finish_reason,
        )
