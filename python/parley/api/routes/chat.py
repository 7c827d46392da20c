"""Completion route.

POST /chat runs one exchange on an existing chat. With stream=false it
returns the normalized completion. With stream=true it returns
text/event-stream:

    event: delta   data: {"delta": "..."}
    event: done    data: {"content": ..., "model": ..., "tokens_used": ..., "finish_reason": ...}
    event: error   data: {"error": {"code": ..., "message": ..., "request_id": ...}}

The first chunk is pulled before the response starts, so validation,
credential and dispatch failures are plain HTTP errors. An error event
is only sent once bytes are already on the wire.
"""

import json
from collections.abc import AsyncIterator
from typing import Annotated

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from parley.api.deps import get_orchestrator
from parley.auth.middleware import Viewer, get_viewer
from parley.errors import ApiError, ApiErrorCode
from parley.logging import get_logger
from parley.middleware.request_id import get_request_id_from_request
from parley.responses import error_response, provider_error_body, success_response
from parley.schemas.chat import ChatCompletionRequest, ChatCompletionResponse
from parley.services.completion import CompletionOrchestrator
from parley.services.llm.errors import ProviderError
from parley.services.llm.types import CompletionChunk

logger = get_logger(__name__)

router = APIRouter(tags=["chat"])

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def format_sse_event(event: str, data: dict) -> str:
    """Format data as an SSE event."""
    return f"event: {event}\ndata: {json.dumps(data)}\n\n"


def _error_event(exc: BaseException, request_id: str | None) -> str:
    if isinstance(exc, ProviderError):
        body = provider_error_body(exc, request_id)
    elif isinstance(exc, ApiError):
        body = error_response(exc.code, exc.message, request_id)
    else:
        body = error_response(ApiErrorCode.E_INTERNAL, "Internal server error", request_id)
    return format_sse_event("error", body)


def _done_payload(chunk: CompletionChunk, content: str) -> dict:
    return ChatCompletionResponse(
        content=content,
        model=chunk.model,
        tokens_used=chunk.tokens_used,
        finish_reason=chunk.finish_reason,
    ).model_dump()


async def _sse_body(
    first: CompletionChunk,
    chunks: AsyncIterator[CompletionChunk],
    request_id: str | None,
) -> AsyncIterator[str]:
    parts: list[str] = []
    chunk = first
    try:
        while True:
            if chunk.done:
                yield format_sse_event("done", _done_payload(chunk, "".join(parts)))
                return
            parts.append(chunk.content)
            yield format_sse_event("delta", {"delta": chunk.content})
            chunk = await anext(chunks)
    except StopAsyncIteration:
        logger.error("chat.stream_ended_without_done")
        yield format_sse_event(
            "error",
            error_response(ApiErrorCode.E_INTERNAL, "Stream ended unexpectedly", request_id),
        )
    except Exception as e:
        if not isinstance(e, (ApiError, ProviderError)):
            logger.exception("chat.stream_failed", error_type=type(e).__name__)
        yield _error_event(e, request_id)
    finally:
        await chunks.aclose()


@router.post("/chat")
async def create_completion(
    body: ChatCompletionRequest,
    request: Request,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    orchestrator: Annotated[CompletionOrchestrator, Depends(get_orchestrator)],
):
    """Run one completion exchange on an existing chat.

    On success the user turn and the assistant reply are stored with
    consecutive sequence numbers.

    Errors:
        E_INVALID_REQUEST (400): Malformed body
        E_PROVIDER_INVALID (400): Unknown provider
        E_NO_DEFAULT_KEY (400): No default key for the provider
        E_CHAT_NOT_FOUND (404): Chat missing, deleted or not owned
        E_LLM_* (502/504): Vendor call failed, nothing stored
        E_PERSISTENCE_FAILED (500): Vendor call succeeded, storing failed
    """
    if not body.stream:
        result = await orchestrator.complete(viewer, body)
        return success_response(
            ChatCompletionResponse(
                content=result.content,
                model=result.model,
                tokens_used=result.tokens_used,
                finish_reason=result.finish_reason,
            ).model_dump()
        )

    request_id = get_request_id_from_request(request)
    chunks = orchestrator.stream(viewer, body)
    try:
        first = await anext(chunks)
    except BaseException:
        await chunks.aclose()
        raise

    return StreamingResponse(
        _sse_body(first, chunks, request_id),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )
