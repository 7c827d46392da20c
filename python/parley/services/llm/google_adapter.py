"""Google Gemini LLM adapter implementation.

- Non-streaming: POST {base_url}/models/{model}:generateContent
- Streaming: POST {base_url}/models/{model}:streamGenerateContent?alt=sse
- base_url defaults to https://generativelanguage.googleapis.com/v1beta

Auth:
- Header: x-goog-api-key: <key>
- The key never goes in a query parameter

Turn conversion:
- System turns -> systemInstruction.parts[].text
- "assistant" role -> "model" role
- Each turn's content -> parts: [{"text": "..."}]

Request body:
{
  "contents": [
    {"role": "user", "parts": [{"text": "..."}]},
    {"role": "model", "parts": [{"text": "..."}]}
  ],
  "systemInstruction": {"parts": [{"text": "<system_prompt>"}]},
  "generationConfig": {"maxOutputTokens": 1024, "temperature": 0.7}
}

Response:
{
  "candidates": [{
    "content": {"parts": [{"text": "<output_text>"}]},
    "finishReason": "STOP"
  }],
  "usageMetadata": {"totalTokenCount": 150}
}

- content = concatenation of candidates[0].content.parts[].text ("" with no candidates)
- tokens_used = usageMetadata.totalTokenCount
- model = the requested model (Gemini does not echo one back)

Streaming:
- Each event: data: {"candidates": [...], "usageMetadata": {...}}
- Terminal: the first event whose candidate carries a finishReason
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

GOOGLE_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"


class GoogleAdapter(ProviderAdapter):
    """Gemini generateContent adapter."""

    provider = Provider.GOOGLE
    default_base_url = GOOGLE_BASE_URL

    async def _send(self, req: CompletionRequest) -> CompletionResult:
        response = await self._client.post(
            self._url(f"models/{req.model}:generateContent"),
            headers=self._build_headers(),
            json=self._build_request_body(req),
            timeout=self._timeout,
        )
        response.raise_for_status()

        return self._parse_response(self._json_object(response), req)

    async def _send_stream(self, req: CompletionRequest) -> AsyncIterator[CompletionChunk]:
        async with self._client.stream(
            "POST",
            self._url(f"models/{req.model}:streamGenerateContent"),
            params={"alt": "sse"},
            headers=self._build_headers(),
            json=self._build_request_body(req),
            timeout=self._timeout,
        ) as response:
            await self._raise_for_stream_status(response)

            async for line in response.aiter_lines():
                data_str = sse_data(line)
                if not data_str:
                    continue

                data = json.loads(data_str)
                candidate = _first_candidate(data)
                text = _candidate_text(candidate)
                finish_reason = candidate.get("finishReason") if candidate else None

                if finish_reason:
                    if text:
                        yield CompletionChunk(content=text, done=False, model=req.model)
                    usage = data.get("usageMetadata") or {}
                    yield CompletionChunk(
                        content="",
                        done=True,
                        model=req.model,
                        tokens_used=usage.get("totalTokenCount"),
                        finish_reason=finish_reason,
                    )
                    return

                if text:
                    yield CompletionChunk(content=text, done=False, model=req.model)

            raise self._stream_ended_early()

    def _build_headers(self) -> dict[str, str]:
        return {
            "x-goog-api-key": self._api_key,
            "Content-Type": "application/json",
        }

    def _build_request_body(self, req: CompletionRequest) -> dict[str, Any]:
        system_parts = [{"text": m.content} for m in req.messages if m.role == "system"]
        contents = [self._message_to_content(m) for m in req.messages if m.role != "system"]

        body: dict[str, Any] = {"contents": contents}

        if system_parts:
            body["systemInstruction"] = {"parts": system_parts}

        generation_config: dict[str, Any] = {}
        if req.max_tokens is not None:
            generation_config["maxOutputTokens"] = req.max_tokens
        if req.temperature is not None:
            generation_config["temperature"] = req.temperature
        if generation_config:
            body["generationConfig"] = generation_config

        return body

    def _message_to_content(self, message: ChatMessage) -> dict[str, Any]:
        role = "model" if message.role == "assistant" else "user"
        return {"role": role, "parts": [{"text": message.content}]}

    def _parse_response(self, data: dict[str, Any], req: CompletionRequest) -> CompletionResult:
        candidate = _first_candidate(data)
        usage = data.get("usageMetadata") or {}

        return CompletionResult(
            content=_candidate_text(candidate),
            model=req.model,
            tokens_used=usage.get("totalTokenCount"),
            finish_reason=candidate.get("finishReason") if candidate else None,
        )


def _first_candidate(data: dict[str, Any]) -> dict[str, Any] | None:
    candidates = data.get("candidates") or []
    return candidates[0] if candidates else None


def _candidate_text(candidate: dict[str, Any] | None) -> str:
    if not candidate:
        return ""
    parts = (candidate.get("content") or {}).get("parts") or []
    return "".join(part.get("text", "") for part in parts)
