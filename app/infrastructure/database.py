"""Database engine, session factory and unit-of-work helpers."""

from contextlib import contextmanager
from typing import Generator, Iterator

import structlog
from sqlalchemy import create_engine
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from app.config import get_settings
from app.core.exceptions import DatabaseException, ErrorCodes

settings = get_settings()
logger = structlog.get_logger(__name__)

connect_args = {"check_same_thread": False} if settings.DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(settings.DATABASE_URL, connect_args=connect_args, pool_pre_ping=True)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


def get_db() -> Generator[Session, None, None]:
    """Dependency for getting database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def session_scope(session_factory: sessionmaker = SessionLocal) -> Iterator[Session]:
    """Open a session for a background job; always released on exit."""
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


def translate_db_error(error: SQLAlchemyError, operation: str) -> DatabaseException:
    if isinstance(error, IntegrityError):
        return DatabaseException(
            ErrorCodes.DATABASE.DUPLICATE_ENTRY,
            f"Duplicate entry during {operation}",
            details={"driver_error": str(error.orig)},
            retryable=True,
        )
    if isinstance(error, OperationalError):
        return DatabaseException(
            ErrorCodes.DATABASE.CONNECTION_ERROR,
            f"Database unavailable during {operation}",
            retryable=True,
        )
    return DatabaseException(ErrorCodes.DATABASE.QUERY_ERROR, f"Error during {operation} operation.")


@contextmanager
def transaction(db: Session, operation: str = "database") -> Iterator[Session]:
    """Commit on success, roll back on any error.

    SQLAlchemy errors leave as ``DatabaseException``; everything else is
    re-raised unchanged after the rollback.
    """
    try:
        yield db
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("Database operation failed", operation=operation, error=str(e))
        raise translate_db_error(e, operation) from e
    except Exception:
        db.rollback()
        raise
