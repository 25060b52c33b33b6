"""Database engine, session factory, and base model.

The engine is built once from ``STRATUS_DATABASE_URL`` (or the local SQLite
file). Long-running callers such as the sync orchestrator take a session
factory rather than a session, so each run opens and closes its own.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Iterator

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from .config import settings


def make_engine(url: str, echo: bool = False) -> Engine:
    kwargs: dict[str, Any] = {"echo": echo}
    if url.startswith("sqlite"):
        # sessions cross threads: API worker pool, scheduler thread
        kwargs["connect_args"] = {"check_same_thread": False}
    else:
        kwargs.update(pool_size=5, max_overflow=10, pool_pre_ping=True)
    return create_engine(url, **kwargs)


engine = make_engine(settings.effective_database_url, echo=settings.debug)

SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for all Stratus models."""
    pass


def get_db() -> Iterator[Session]:
    """FastAPI dependency — yields a DB session, auto-closes."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def session_scope() -> Iterator[Session]:
    """Session for CLI commands. Rolls back on error, always closes."""
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def init_db(bind: Engine | None = None) -> None:
    """Create all tables (for development and tests — use Alembic in production)."""
    from . import models  # noqa: F401 — register all models on Base.metadata

    Base.metadata.create_all(bind=bind or engine)
