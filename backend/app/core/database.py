"""Database connection and session management"""
import logging
from contextlib import contextmanager
from typing import Callable, Generator, Optional, Tuple, Type, TypeVar

from sqlalchemy import create_engine, inspect
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from app.core.config import settings

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT")

# Configure engine based on database type
engine_kwargs = {
    "echo": settings.DEBUG,  # Log SQL queries in debug mode
}

# SQLite requires check_same_thread=False for multi-threaded access
# PostgreSQL doesn't need this and doesn't support it
if settings.DATABASE_URL.startswith("sqlite"):
    engine_kwargs["connect_args"] = {"check_same_thread": False}

# Create SQLAlchemy engine
engine = create_engine(settings.DATABASE_URL, **engine_kwargs)

# Session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for ORM models
Base = declarative_base()


def get_db():
    """Dependency for FastAPI routes to get database session"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def get_db_session(
    session_factory: Optional[Callable[[], Session]] = None,
) -> Generator[Session, None, None]:
    """
    Context manager for database sessions in non-request contexts.

    Use this for workers and scheduled jobs where FastAPI dependency
    injection is not available. Each worker unit opens its own session;
    no session is shared between units of work.

    Usage:
        with get_db_session() as db:
            result = db.query(Model).all()
            db.commit()  # If modifications made

    Args:
        session_factory: Optional factory (tests pass their own sessionmaker)
    """
    db = (session_factory or SessionLocal)()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def insert_if_absent(db: Session, model: Type[ModelT], obj: ModelT) -> Tuple[ModelT, bool]:
    """
    Insert a row keyed by a deterministic primary key, or return the existing row.

    The uniqueness constraint is the guard: concurrent workers racing on the
    same key both end up with the same row, one of them absorbing the
    IntegrityError. Pending changes in the session are committed first so the
    rollback on conflict cannot discard them.

    Returns:
        (row, created) where created is False when the row already existed
    """
    db.commit()

    key = tuple(inspect(model).primary_key_from_instance(obj))
    existing = db.get(model, key)
    if existing is not None:
        return existing, False

    db.add(obj)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        existing = db.get(model, key)
        if existing is None:
            # Conflict on a secondary unique key; re-raise for the caller
            raise
        logger.debug(
            f"Concurrent insert absorbed for {model.__name__} {key}",
            extra={"event_type": "insert_conflict_absorbed", "model": model.__name__},
        )
        return existing, False

    return obj, True
