"""API route definitions.

Uses a factory pattern to avoid import-time settings loading.
This allows tests to import modules without requiring all environment
variables to be configured upfront.
"""

from fastapi import APIRouter

from parley.api.routes.chat import router as chat_router
from parley.api.routes.chats import router as chats_router
from parley.api.routes.features import router as features_router
from parley.api.routes.health import router as health_router
from parley.api.routes.keys import router as keys_router
from parley.api.routes.me import router as me_router
from parley.api.routes.models import router as models_router

API_PREFIX = "/v1"


def create_api_router() -> APIRouter:
    """Create and configure the API router.

    /health is served at the root; everything else lives under /v1.

    Returns:
        Configured APIRouter with all routes registered.
    """
    versioned = APIRouter(prefix=API_PREFIX)
    versioned.include_router(me_router, tags=["user"])
    versioned.include_router(chat_router)
    versioned.include_router(chats_router)
    versioned.include_router(keys_router)
    versioned.include_router(models_router)
    versioned.include_router(features_router)

    api_router = APIRouter()
    api_router.include_router(health_router, tags=["health"])
    api_router.include_router(versioned)
    return api_router


__all__ = ["API_PREFIX", "create_api_router"]
