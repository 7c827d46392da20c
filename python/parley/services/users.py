"""User bootstrap service.

Provides race-safe user creation on first authenticated request.
"""

from sqlalchemy import update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session, sessionmaker

from parley.db.models import User, utcnow
from parley.db.session import transaction
from parley.logging import get_logger

logger = get_logger(__name__)


def _insert_for(db: Session):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert
    if dialect == "sqlite":
        return sqlite.insert
    raise RuntimeError(f"Unsupported database dialect: {dialect}")


def ensure_user(db: Session, user_id: str, email: str | None = None) -> None:
    """Ensure a users row exists for the identity subject.

    Idempotent and safe under concurrent first requests: the insert is
    ON CONFLICT DO NOTHING. A changed email claim is written back.
    """
    insert = _insert_for(db)

    with transaction(db):
        result = db.execute(
            insert(User)
            .values(id=user_id, email=email)
            .on_conflict_do_nothing(index_elements=[User.id])
        )

        if result.rowcount:
            logger.info("user.created", user_id=user_id)
        elif email is not None:
            db.execute(
                update(User)
                .where(User.id == user_id, User.email.is_distinct_from(email))
                .values(email=email, updated_at=utcnow())
            )


def create_bootstrap_callback(session_factory: sessionmaker[Session]):
    """Create the auth middleware bootstrap callback.

    Each call opens its own session, runs ensure_user, and closes it.
    """

    def callback(user_id: str, email: str | None) -> None:
        with session_factory() as db:
            ensure_user(db, user_id, email)

    return callback
