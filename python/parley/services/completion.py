"""Completion orchestration: one chat exchange from request to stored turns.

States, in order:
    validating -> resolving_credential -> assembling_context -> dispatching
    -> persisting_user_turn -> persisting_assistant_turn -> done
with failed reachable from every non-terminal state.

Ordering rules:
- Nothing is written before the vendor call succeeds. A provider failure
  leaves the chat exactly as it was.
- The user turn and the assistant turn each allocate max(sequence_number) + 1
  at their own insert, so a concurrent exchange interleaving between them is
  tolerated. Conflicts are retried in parley.services.messages.
- A storage failure after a successful vendor call loses the generated
  completion. It is logged as completion.result_lost and surfaced as
  PersistenceError, never hidden.

Sync DB access runs in the threadpool (starlette run_in_threadpool), each
step with its own short-lived session, so the event loop is never blocked
and no connection is held across the vendor call.
"""

import time
from collections.abc import AsyncIterator, Callable
from enum import Enum
from typing import Any, TypeVar
from uuid import UUID

import httpx
from sqlalchemy.orm import Session, sessionmaker
from starlette.concurrency import run_in_threadpool

from parley.auth.middleware import Viewer
from parley.config import Settings
from parley.db.models import MessageRole
from parley.errors import ApiError, PersistenceError
from parley.logging import get_logger, set_chat_id
from parley.schemas.chat import ChatCompletionRequest
from parley.services import chats, messages
from parley.services.api_key_resolver import ResolvedCredential, resolve_default_credential
from parley.services.conversation import build_context
from parley.services.crypto import KeyCipher
from parley.services.llm.adapter import ProviderAdapter
from parley.services.llm.errors import ProviderError
from parley.services.llm.registry import ProviderRegistry
from parley.services.llm.types import (
    CompletionChunk,
    CompletionRequest,
    CompletionResult,
    Provider,
    parse_provider,
)

logger = get_logger(__name__)

T = TypeVar("T")


class CompletionState(str, Enum):
    """Steps of one completion exchange."""

    VALIDATING = "validating"
    RESOLVING_CREDENTIAL = "resolving_credential"
    ASSEMBLING_CONTEXT = "assembling_context"
    DISPATCHING = "dispatching"
    PERSISTING_USER_TURN = "persisting_user_turn"
    PERSISTING_ASSISTANT_TURN = "persisting_assistant_turn"
    DONE = "done"
    FAILED = "failed"


class _Exchange:
    """Per-request bookkeeping: current state and timing, for logs."""

    def __init__(self, chat_id: UUID, provider: str, model: str, streaming: bool):
        self.chat_id = chat_id
        self.provider = provider
        self.model = model
        self.streaming = streaming
        self.state = CompletionState.VALIDATING
        self.start = time.monotonic()

    def enter(self, state: CompletionState) -> None:
        self.state = state
        logger.debug(
            "completion.state",
            state=state.value,
            provider=self.provider,
            model=self.model,
            streaming=self.streaming,
        )

    def fail(self, exc: BaseException) -> None:
        failed_in = self.state
        self.state = CompletionState.FAILED
        if isinstance(exc, ProviderError):
            error_code = exc.error_class.value
        elif isinstance(exc, ApiError):
            error_code = exc.code.value
        else:
            error_code = type(exc).__name__
        logger.info(
            "completion.failed",
            failed_in=failed_in.value,
            error_code=error_code,
            provider=self.provider,
            model=self.model,
            streaming=self.streaming,
            latency_ms=self.elapsed_ms(),
        )

    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self.start) * 1000)


class CompletionOrchestrator:
    """Runs completion exchanges for authenticated users.

    One instance serves many requests. It holds no per-request state:
    credentials and adapters are built fresh for every exchange.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        client: httpx.AsyncClient,
        settings: Settings,
        cipher: KeyCipher,
    ):
        self._session_factory = session_factory
        self._client = client
        self._settings = settings
        self._cipher = cipher

    async def complete(self, viewer: Viewer, request: ChatCompletionRequest) -> CompletionResult:
        """Run one non-streaming exchange and return the normalized result.

        Raises:
            InvalidRequestError: Unknown provider or no usable default key.
            NotFoundError: Chat missing, soft-deleted or owned by someone else.
            ProviderError: Vendor call failed. Nothing was written.
            PersistenceError: Vendor call succeeded but the turns were not stored.
        """
        exchange = _Exchange(request.chat_id, request.model_provider, request.model_id, False)
        set_chat_id(str(request.chat_id))

        try:
            adapter, completion_request = await self._prepare(viewer, request, exchange)

            exchange.enter(CompletionState.DISPATCHING)
            result = await adapter.complete(completion_request)

            await self._persist_exchange(viewer, request, result, exchange)
        except BaseException as e:
            exchange.fail(e)
            raise

        self._finish(exchange, result)
        return result

    async def stream(
        self, viewer: Viewer, request: ChatCompletionRequest
    ) -> AsyncIterator[CompletionChunk]:
        """Run one streaming exchange.

        Yields the vendor's delta chunks as they arrive. Both turns are stored
        after the vendor's terminal chunk and before it is yielded, so the
        final chunk means the exchange is recorded. A stream that fails or is
        abandoned part way stores nothing.

        Raises:
            Same as complete(), raised from iteration.
        """
        exchange = _Exchange(request.chat_id, request.model_provider, request.model_id, True)
        set_chat_id(str(request.chat_id))

        try:
            adapter, completion_request = await self._prepare(viewer, request, exchange)

            exchange.enter(CompletionState.DISPATCHING)
            parts: list[str] = []
            final: CompletionChunk | None = None

            # The adapter ends the iteration right after the terminal chunk
            async for chunk in adapter.stream_complete(completion_request):
                if chunk.done:
                    final = chunk
                else:
                    parts.append(chunk.content)
                    yield chunk

            result = CompletionResult(
                content="".join(parts),
                model=final.model,
                tokens_used=final.tokens_used,
                finish_reason=final.finish_reason,
            )
            await self._persist_exchange(viewer, request, result, exchange)
        except BaseException as e:
            exchange.fail(e)
            raise

        self._finish(exchange, result)
        yield final

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def _prepare(
        self, viewer: Viewer, request: ChatCompletionRequest, exchange: _Exchange
    ) -> tuple[ProviderAdapter, CompletionRequest]:
        """Validate, resolve the credential and assemble context. No writes."""
        exchange.enter(CompletionState.VALIDATING)
        provider = parse_provider(request.model_provider)
        await self._run_db(chats.get_chat_or_404, request.chat_id, viewer.user_id)

        exchange.enter(CompletionState.RESOLVING_CREDENTIAL)
        credential = await self._run_db(
            resolve_default_credential, self._cipher, viewer.user_id, provider
        )

        exchange.enter(CompletionState.ASSEMBLING_CONTEXT)
        context = await self._run_db(
            build_context, request.chat_id, viewer.user_id, request.message
        )

        adapter = self._adapter_for(credential, provider)
        completion_request = CompletionRequest(
            model=request.model_id,
            messages=context,
            temperature=request.temperature,
            max_tokens=request.max_tokens,
        )
        return adapter, completion_request

    def _adapter_for(self, credential: ResolvedCredential, provider: Provider) -> ProviderAdapter:
        registry = ProviderRegistry(
            {credential.provider: credential.api_key},
            client=self._client,
            settings=self._settings,
        )
        adapter = registry.get(provider)
        if adapter is None:
            raise RuntimeError(f"No adapter registered for {provider.value}")
        return adapter

    async def _persist_exchange(
        self,
        viewer: Viewer,
        request: ChatCompletionRequest,
        result: CompletionResult,
        exchange: _Exchange,
    ) -> None:
        """Store the user turn, then the assistant turn, then usage."""
        max_attempts = self._settings.seq_max_attempts
        user_message_id: UUID | None = None

        try:
            exchange.enter(CompletionState.PERSISTING_USER_TURN)
            user_message = await self._run_db(
                messages.append_message,
                request.chat_id,
                viewer.user_id,
                MessageRole.user,
                request.message,
                max_attempts=max_attempts,
            )
            user_message_id = user_message.id

            exchange.enter(CompletionState.PERSISTING_ASSISTANT_TURN)
            assistant_message = await self._run_db(
                messages.append_message,
                request.chat_id,
                viewer.user_id,
                MessageRole.assistant,
                result.content,
                parent_message_id=user_message.id,
                max_attempts=max_attempts,
            )

            if result.tokens_used is not None or result.model:
                await self._run_db(
                    messages.update_tokens_used,
                    assistant_message.id,
                    result.tokens_used,
                    result.model,
                )
        except Exception as e:
            step = exchange.state.value
            logger.error(
                "completion.result_lost",
                step=step,
                provider=exchange.provider,
                model=result.model,
                tokens_total=result.tokens_used,
                content_chars=len(result.content),
                user_message_id=str(user_message_id) if user_message_id else None,
                error_type=type(e).__name__,
            )
            if isinstance(e, PersistenceError):
                raise
            raise PersistenceError(
                "The completion succeeded but could not be saved", step=step
            ) from e

    def _finish(self, exchange: _Exchange, result: CompletionResult) -> None:
        exchange.enter(CompletionState.DONE)
        logger.info(
            "completion.finished",
            provider=exchange.provider,
            model=result.model,
            streaming=exchange.streaming,
            tokens_total=result.tokens_used,
            finish_reason=result.finish_reason,
            content_chars=len(result.content),
            latency_ms=exchange.elapsed_ms(),
        )

    async def _run_db(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Run fn(db, *args, **kwargs) in the threadpool with a fresh session."""

        def call() -> T:
            with self._session_factory() as db:
                return fn(db, *args, **kwargs)

        return await run_in_threadpool(call)
