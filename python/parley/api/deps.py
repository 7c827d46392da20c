"""FastAPI dependencies for route handlers.

Everything here reads from app.state, which create_app() and the lifespan
populate. Nothing is read from process-wide settings at request time.
"""

from fastapi import Request

from parley.config import Settings
from parley.db.session import get_db
from parley.services.completion import CompletionOrchestrator
from parley.services.crypto import KeyCipher

__all__ = [
    "get_db",
    "get_app_settings",
    "get_key_cipher",
    "get_orchestrator",
]


def get_app_settings(request: Request) -> Settings:
    """The Settings object the app was created with."""
    return request.app.state.settings


def get_key_cipher(request: Request) -> KeyCipher:
    """The cipher used to encrypt and decrypt stored API keys."""
    return request.app.state.key_cipher


def get_orchestrator(request: Request) -> CompletionOrchestrator:
    """The completion orchestrator bound to the shared client and session factory."""
    return request.app.state.orchestrator
