"""
Fastlane — Database Session

SQLAlchemy engine, session factory, and declarative base for the
responder directory. Alerts never touch the database.
"""

from __future__ import annotations

from typing import Any, Dict

from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from fastlane.config import get_settings

settings = get_settings()


def _engine_kwargs(url: str) -> Dict[str, Any]:
    if url.startswith("sqlite"):
        # FastAPI runs sync handlers on a thread pool
        return {"connect_args": {"check_same_thread": False}}
    return {"pool_pre_ping": True, "pool_size": 5, "max_overflow": 10}


engine = create_engine(settings.database_url, **_engine_kwargs(settings.database_url))

SessionLocal: sessionmaker[Session] = sessionmaker(
    bind=engine,
    autocommit=False,
    autoflush=False,
)


class Base(DeclarativeBase):
    """Shared declarative base for all ORM models."""
    pass


def get_db():
    """FastAPI dependency — yields a DB session and closes it when done."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
