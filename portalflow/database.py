"""
Database connection and session management for Portalflow.

Provides:
- SessionLocal: Factory for creating database sessions
- get_db(): Context manager for DB sessions
- engine: SQLAlchemy engine instance (None until DATABASE_URL is set)
"""

import os
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from contextlib import contextmanager
from typing import Generator, Optional

from dotenv import load_dotenv
load_dotenv()


def get_database_url() -> Optional[str]:
    """DATABASE_URL with postgres:// rewritten to postgresql://"""
    url = os.getenv("DATABASE_URL")
    if url and url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql://", 1)
    return url


DATABASE_URL = get_database_url()

# pool_pre_ping=True ensures connections are valid before using them
engine = create_engine(DATABASE_URL, pool_pre_ping=True, echo=False) if DATABASE_URL else None

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def _require_engine() -> None:
    if engine is None:
        raise ValueError(
            "DATABASE_URL environment variable not set. "
            "Please configure it in .env file."
        )


@contextmanager
def get_db() -> Generator[Session, None, None]:
    """
    Context manager for database sessions.

    Usage:
        with get_db() as db:
            workflow = db.query(Workflow).filter(Workflow.id == 1).first()

    The session is automatically closed when exiting the context,
    and rolled back if an exception occurs.
    """
    _require_engine()
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def get_db_session() -> Session:
    """
    Get a new database session (without context manager).

    Note: You must manually close the session after use.
    Prefer using get_db() context manager when possible.
    """
    _require_engine()
    return SessionLocal()
