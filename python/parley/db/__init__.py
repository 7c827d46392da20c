"""Database module for Parley.

Provides engine creation, session management, transaction helpers, and ORM models.
"""

from parley.db.engine import create_db_engine
from parley.db.models import Base, Chat, Message, MessageRole, User, UserApiKey
from parley.db.session import create_session_factory, get_db, transaction

__all__ = [
    "create_db_engine",
    "create_session_factory",
    "get_db",
    "transaction",
    "Base",
    "MessageRole",
    "User",
    "Chat",
    "Message",
    "UserApiKey",
]
