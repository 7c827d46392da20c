"""FastAPI application creation and configuration.

This module creates and configures the FastAPI application instance.
It registers exception handlers, auth middleware, request-id middleware, and routes.

Configuration:
- create_app() builds Settings once (or takes them) and stores them on
  app.state.settings; everything downstream reads them from there
- The session factory and key cipher are created here; the vendor HTTP
  client and the completion orchestrator are created by the lifespan

Middleware Ordering (Critical):
- Middleware runs in reverse order of registration
- RequestIDMiddleware is added LAST so it runs FIRST (outermost)
- This ensures all requests (including auth failures) get X-Request-ID

Actual execution order per request:
1. RequestIDMiddleware (sets request_id, starts timer)
2. AuthMiddleware (verifies auth, upserts user, sets viewer)
3. Route handler
4. AuthMiddleware (returns response)
5. RequestIDMiddleware (logs, sets response header)

Vendor Client Lifecycle:
- httpx.AsyncClient is created at startup, stored in app.state
- Every adapter shares it for connection pooling
- Client is closed gracefully at shutdown
"""

from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from sqlalchemy.orm import Session, sessionmaker
from starlette.exceptions import HTTPException as StarletteHTTPException

from parley.api.routes import create_api_router
from parley.auth.middleware import AuthMiddleware
from parley.auth.verifier import JwksTokenVerifier, TokenVerifier
from parley.config import Settings, get_settings
from parley.db.engine import create_db_engine
from parley.db.session import create_session_factory
from parley.errors import ApiError
from parley.logging import configure_logging, get_logger
from parley.middleware.request_id import RequestIDMiddleware
from parley.responses import (
    api_error_handler,
    http_exception_handler,
    provider_error_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from parley.services.completion import CompletionOrchestrator
from parley.services.crypto import KeyCipher
from parley.services.llm.errors import ProviderError
from parley.services.users import create_bootstrap_callback

# Configure structured logging at import time
configure_logging()

logger = get_logger(__name__)


def create_token_verifier(settings: Settings) -> TokenVerifier | None:
    """Create the JWKS token verifier, or None when auth is not configured.

    Auth settings may only be absent when anonymous access is enabled;
    Settings validation enforces that.
    """
    if not settings.auth_jwks_url:
        return None

    return JwksTokenVerifier(
        jwks_url=settings.auth_jwks_url,
        issuer=settings.normalized_issuer,  # type: ignore[arg-type]
        audiences=settings.audience_list,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle resources.

    - Creates the shared httpx.AsyncClient for vendor calls
    - Creates the CompletionOrchestrator bound to it
    - Closes the client on shutdown
    """
    settings: Settings = app.state.settings

    app.state.httpx_client = httpx.AsyncClient(
        timeout=httpx.Timeout(settings.llm_timeout_s, connect=settings.llm_connect_timeout_s),
        limits=httpx.Limits(max_connections=100, max_keepalive_connections=20),
    )

    app.state.orchestrator = CompletionOrchestrator(
        session_factory=app.state.session_factory,
        client=app.state.httpx_client,
        settings=settings,
        cipher=app.state.key_cipher,
    )

    logger.info(
        "orchestrator_initialized",
        env=settings.parley_env.value,
        llm_timeout_s=settings.llm_timeout_s,
    )

    yield

    await app.state.httpx_client.aclose()
    logger.info("httpx_client_closed")


def create_app(
    settings: Settings | None = None,
    token_verifier: TokenVerifier | None = None,
    session_factory: sessionmaker[Session] | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Explicit settings; loaded from the environment if omitted.
        token_verifier: Optional custom token verifier (for testing).
        session_factory: Optional session factory; built from DATABASE_URL if omitted.

    Returns:
        Configured FastAPI application instance.
    """
    settings = settings or get_settings()

    app = FastAPI(
        title="Parley API",
        description="Chat completion gateway over multiple LLM vendors",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    if session_factory is None:
        session_factory = create_session_factory(create_db_engine(settings.database_url))

    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.key_cipher = KeyCipher.from_settings(settings)

    # Register exception handlers
    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(ProviderError, provider_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.include_router(create_api_router())

    # Add auth middleware (runs on all requests except public paths)
    verifier = token_verifier or create_token_verifier(settings)
    app.add_middleware(
        AuthMiddleware,
        verifier=verifier,
        allow_anonymous=settings.allow_anonymous,
        bootstrap_callback=create_bootstrap_callback(session_factory),
    )

    logger.info(
        "auth_middleware_enabled",
        env=settings.parley_env.value,
        allow_anonymous=settings.allow_anonymous,
        verifier_configured=verifier is not None,
    )

    return app


def add_request_id_middleware(app: FastAPI, log_requests: bool = True) -> None:
    """Add request-id middleware to the app.

    This should be called AFTER all other middleware is added, so it runs FIRST.
    This ensures every response includes X-Request-ID, including auth failures.

    Args:
        app: The FastAPI application.
        log_requests: Whether to log access entries for each request.
    """
    app.add_middleware(RequestIDMiddleware, log_requests=log_requests)
    logger.info("request_id_middleware_enabled")
