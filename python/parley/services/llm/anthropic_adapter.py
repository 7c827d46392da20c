"""Anthropic LLM adapter implementation.

- Endpoint: POST {base_url}/messages (base_url defaults to https://api.anthropic.com/v1)
- Headers: x-api-key: <key>, anthropic-version: 2023-06-01, Content-Type: application/json

Turn conversion:
- System turns are joined into the top-level "system" field
  (Anthropic has no system role in the messages array)
- Remaining turns keep their role

Request body:
{
  "model": "<model>",
  "max_tokens": 1024,
  "temperature": 0.7,
  "system": "<system_prompt>",
  "messages": [
    {"role": "user", "content": "..."},
    {"role": "assistant", "content": "..."}
  ]
}

Response (non-stream):
{
  "model": "claude-3-opus-20240229",
  "content": [{"type": "text", "text": "<output_text>"}],
  "stop_reason": "end_turn",
  "usage": {"input_tokens": 100, "output_tokens": 50}
}

- content = concatenation of content[].text where type="text"
- tokens_used = input_tokens + output_tokens
- finish_reason = stop_reason

Streaming events (SSE, each with a JSON data line carrying "type"):
- message_start: model and input token usage
- content_block_delta: {"delta": {"type": "text_delta", "text": "..."}}
- message_delta: stop_reason and output token usage
- message_stop: terminal
- error: vendor-side failure mid-stream
"""

import json
from collections.abc import AsyncIterator
from typing import Any

from parley.services.llm.adapter import ProviderAdapter, sse_data
from parley.services.llm.errors import ProviderError, ProviderErrorClass
from parley.services.llm.types import (
    ChatMessage,
    CompletionChunk,
    CompletionRequest,
    CompletionResult,
    Provider,
)

ANTHROPIC_BASE_URL = "https://api.anthropic.com/v1"
ANTHROPIC_API_VERSION = "2023-06-01"

# The messages API requires max_tokens
DEFAULT_MAX_TOKENS = 1024


class AnthropicAdapter(ProviderAdapter):
    """Anthropic API adapter for the messages endpoint."""

    provider = Provider.ANTHROPIC
    default_base_url = ANTHROPIC_BASE_URL

    async def _send(self, req: CompletionRequest) -> CompletionResult:
        response = await self._client.post(
            self._url("messages"),
            headers=self._build_headers(),
            json=self._build_request_body(req, stream=False),
            timeout=self._timeout,
        )
        response.raise_for_status()

        return self._parse_response(self._json_object(response), req)

    async def _send_stream(self, req: CompletionRequest) -> AsyncIterator[CompletionChunk]:
        async with self._client.stream(
            "POST",
            self._url("messages"),
            headers=self._build_headers(),
            json=self._build_request_body(req, stream=True),
            timeout=self._timeout,
        ) as response:
            await self._raise_for_stream_status(response)

            model = req.model
            input_tokens: int | None = None
            output_tokens: int | None = None
            stop_reason: str | None = None

            async for line in response.aiter_lines():
                # "event:" lines repeat the type carried in the data payload
                data_str = sse_data(line)
                if not data_str:
                    continue

                data = json.loads(data_str)
                event_type = data.get("type", "")

                if event_type == "message_start":
                    message = data.get("message") or {}
                    model = message.get("model") or model
                    usage = message.get("usage") or {}
                    input_tokens = usage.get("input_tokens", input_tokens)
                    continue

                if event_type == "content_block_delta":
                    delta = data.get("delta") or {}
                    if delta.get("type") == "text_delta" and delta.get("text"):
                        yield CompletionChunk(content=delta["text"], done=False, model=model)
                    continue

                if event_type == "message_delta":
                    stop_reason = (data.get("delta") or {}).get("stop_reason") or stop_reason
                    usage = data.get("usage") or {}
                    output_tokens = usage.get("output_tokens", output_tokens)
                    continue

                if event_type == "message_stop":
                    yield CompletionChunk(
                        content="",
                        done=True,
                        model=model,
                        tokens_used=_total_tokens(input_tokens, output_tokens),
                        finish_reason=stop_reason,
                    )
                    return

                if event_type == "error":
                    error = data.get("error") or {}
                    raise ProviderError(
                        _stream_error_class(error.get("type")),
                        f"Anthropic stream error: {error.get('type', 'unknown')}",
                        provider=self.provider.value,
                    )

            raise self._stream_ended_early()

    def _build_headers(self) -> dict[str, str]:
        return {
            "x-api-key": self._api_key,
            "anthropic-version": ANTHROPIC_API_VERSION,
            "Content-Type": "application/json",
        }

    def _build_request_body(self, req: CompletionRequest, stream: bool) -> dict[str, Any]:
        """Build the request body, moving system turns to the top-level field."""
        system_parts = [m.content for m in req.messages if m.role == "system"]
        messages = [self._message_to_wire(m) for m in req.messages if m.role != "system"]

        body: dict[str, Any] = {
            "model": req.model,
            "max_tokens": req.max_tokens if req.max_tokens is not None else DEFAULT_MAX_TOKENS,
            "messages": messages,
            "stream": stream,
        }

        if system_parts:
            body["system"] = "\n\n".join(system_parts)
        if req.temperature is not None:
            body["temperature"] = req.temperature

        return body

    def _message_to_wire(self, message: ChatMessage) -> dict[str, str]:
        return {"role": message.role, "content": message.content}

    def _parse_response(self, data: dict[str, Any], req: CompletionRequest) -> CompletionResult:
        text = "".join(
            block.get("text", "")
            for block in data.get("content") or []
            if block.get("type") == "text"
        )

        usage = data.get("usage") or {}

        return CompletionResult(
            content=text,
            model=data.get("model") or req.model,
            tokens_used=_total_tokens(usage.get("input_tokens"), usage.get("output_tokens")),
            finish_reason=data.get("stop_reason"),
        )


def _total_tokens(input_tokens: int | None, output_tokens: int | None) -> int | None:
    if input_tokens is None and output_tokens is None:
        return None
    return (input_tokens or 0) + (output_tokens or 0)


def _stream_error_class(error_type: str | None) -> ProviderErrorClass:
    if error_type == "rate_limit_error":
        return ProviderErrorClass.RATE_LIMIT
    if error_type == "authentication_error":
        return ProviderErrorClass.INVALID_KEY
    return ProviderErrorClass.PROVIDER_DOWN
