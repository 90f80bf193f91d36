"""Database engine, session factory and the declarative base for the ledger."""

from __future__ import annotations

from collections.abc import Iterator

from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from app.core.config import settings


def _engine_kwargs(url: str) -> dict:
    # SQLite connections are shared between the request thread and the test client
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {"pool_pre_ping": True}


engine = create_engine(settings.database_url, echo=False, **_engine_kwargs(settings.database_url))
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


def get_db() -> Iterator[Session]:
    """Dependency that provides a database session per request.

    Commit boundaries belong to the settlement services, not to the
    request, so the session is only closed here.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
