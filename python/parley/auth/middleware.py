"""Authentication middleware for FastAPI.

Provides:
- Viewer: the authenticated identity attached to each request
- AuthMiddleware: Global middleware for bearer token verification
- get_viewer: Dependency for accessing the authenticated viewer
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass

from fastapi import Depends, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from parley.auth.verifier import TokenVerifier
from parley.errors import ApiError, ApiErrorCode
from parley.responses import error_response

logger = logging.getLogger(__name__)

AUTHORIZATION_HEADER = "authorization"

# Paths that don't require authentication
PUBLIC_PATHS = {"/health", "/docs", "/redoc", "/openapi.json"}

# Identity used for header-less requests when anonymous access is enabled
ANONYMOUS_USER_ID = "anonymous"


@dataclass(frozen=True)
class Viewer:
    """Authenticated viewer identity.

    Attributes:
        user_id: The identity provider's subject claim, used as users.id.
        email: The email claim, if the token carried one.
    """

    user_id: str
    email: str | None = None


class AuthMiddleware(BaseHTTPMiddleware):
    """Authentication middleware for FastAPI.

    Order of checks:
    1. Skip if public path
    2. Extract the bearer token (or fall back to the anonymous viewer)
    3. Verify token via TokenVerifier
    4. Call bootstrap callback to ensure the user row exists
    5. Attach Viewer to request state
    """

    def __init__(
        self,
        app: ASGIApp,
        verifier: TokenVerifier | None,
        allow_anonymous: bool = False,
        bootstrap_callback: Callable[[str, str | None], None] | None = None,
    ):
        """Initialize the auth middleware.

        Args:
            app: The ASGI application.
            verifier: TokenVerifier for JWT verification. May be None only when
                anonymous access is enabled.
            allow_anonymous: Serve requests without an Authorization header as
                the anonymous viewer.
            bootstrap_callback: Function(user_id, email) called after successful
                auth to ensure the user exists.
        """
        super().__init__(app)
        self.verifier = verifier
        self.allow_anonymous = allow_anonymous
        self.bootstrap_callback = bootstrap_callback

    async def dispatch(self, request: Request, call_next) -> JSONResponse:
        """Process the request through auth checks."""
        if request.url.path in PUBLIC_PATHS:
            return await call_next(request)

        if self.allow_anonymous and not request.headers.get(AUTHORIZATION_HEADER):
            viewer = Viewer(user_id=ANONYMOUS_USER_ID)
        else:
            token, error_response_obj = self._extract_bearer_token(request)
            if error_response_obj:
                return error_response_obj

            if self.verifier is None:
                logger.error("Bearer token received but no verifier is configured")
                return self._error_json_response(
                    ApiErrorCode.E_AUTH_UNAVAILABLE, "Authentication service unavailable", 503
                )

            # JWKS fetches are blocking
            try:
                payload = await run_in_threadpool(self.verifier.verify, token)
            except ApiError as e:
                return self._error_json_response(e.code, e.message, e.status_code)

            email = payload.get("email")
            viewer = Viewer(
                user_id=payload["sub"],
                email=email if isinstance(email, str) else None,
            )

        if self.bootstrap_callback:
            try:
                await run_in_threadpool(self.bootstrap_callback, viewer.user_id, viewer.email)
            except Exception:
                logger.exception("Bootstrap failed for user %s", viewer.user_id)
                return self._error_json_response(
                    ApiErrorCode.E_INTERNAL, "Internal server error", 500
                )

        request.state.viewer = viewer

        return await call_next(request)

    def _extract_bearer_token(self, request: Request) -> tuple[str, JSONResponse | None]:
        """Extract bearer token from Authorization header.

        Returns:
            Tuple of (token, error_response). Token is empty string if error.
        """
        auth_header = request.headers.get(AUTHORIZATION_HEADER)

        if not auth_header:
            logger.warning(
                "auth_failure",
                extra={"reason": "missing_header", "request_path": request.url.path},
            )
            return "", self._error_json_response(
                ApiErrorCode.E_UNAUTHENTICATED, "Authentication required", 401
            )

        # Bearer prefix is case-insensitive
        token = auth_header[7:].strip() if auth_header.lower().startswith("bearer ") else ""

        if not token:
            logger.warning(
                "auth_failure",
                extra={"reason": "invalid_header_format", "request_path": request.url.path},
            )
            return "", self._error_json_response(
                ApiErrorCode.E_UNAUTHENTICATED, "Invalid authorization header format", 401
            )

        return token, None

    def _error_json_response(
        self, code: ApiErrorCode, message: str, status_code: int
    ) -> JSONResponse:
        return JSONResponse(status_code=status_code, content=error_response(code, message))


def get_viewer(request: Request) -> Viewer:
    """FastAPI dependency to get the authenticated viewer.

    Raises:
        ApiError: E_UNAUTHENTICATED if the middleware did not attach a viewer.
    """
    viewer = getattr(request.state, "viewer", None)
    if viewer is None:
        raise ApiError(ApiErrorCode.E_UNAUTHENTICATED, "Authentication required")
    return viewer


# Type alias for dependency injection
ViewerDep = Depends(get_viewer)
