"""On-device storage for data that must survive a restart.

Kept apart from the remote store: the offline message queue and the user's
language preference live here and are never synchronized.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from farmlink.core.settings import settings


class LocalBase(DeclarativeBase):
    """Declarative base for local-only tables."""


def create_local_engine(url: str | None = None, **engine_kwargs: Any) -> Engine:
    """Create an engine for the local store and ensure its tables exist."""
    import farmlink.models.local  # noqa: F401

    engine_kwargs.setdefault("echo", settings.sql_debug)
    local_engine = create_engine(url or settings.local_store_url, **engine_kwargs)
    LocalBase.metadata.create_all(bind=local_engine)
    return local_engine


def local_session_factory(local_engine: Engine) -> sessionmaker:
    """Return a session factory bound to a local-store engine."""
    return sessionmaker(
        bind=local_engine,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )
