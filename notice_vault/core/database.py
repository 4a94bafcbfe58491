"""SQLAlchemy engine & session factory construction.

Nothing here opens a connection at import time. The API lifespan, the
recovery CLI and the Celery task each build their own engine and dispose
of it when they shut down.
"""

from __future__ import annotations

from typing import Iterator

from fastapi import Request
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker


class Base(DeclarativeBase):
    """Shared declarative base for all ORM models."""

    pass


def create_db_engine(database_url: str, *, echo: bool = False) -> Engine:
    """Build an engine for *database_url* with connection liveness checks."""
    kwargs: dict = {"echo": echo, "pool_pre_ping": True}
    if database_url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
    return create_engine(database_url, **kwargs)


def make_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, class_=Session, expire_on_commit=False)


def get_db(request: Request) -> Iterator[Session]:
    """FastAPI dependency — yields a request-scoped DB session."""
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()
