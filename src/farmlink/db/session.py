"""Database session configuration for the reference remote store."""

from __future__ import annotations

from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from farmlink.core.settings import settings


class Base(DeclarativeBase):
    """Declarative base shared by all remote-store ORM models."""


# Ensure model modules are imported so that metadata is populated when create_all runs.
import farmlink.models  # noqa: E402,F401

engine = create_engine(
    settings.database_url,
    pool_pre_ping=True,
    echo=settings.sql_debug,
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

