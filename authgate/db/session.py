"""Database session configuration."""

from __future__ import annotations

from collections.abc import Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from authgate.core.config import settings


class Base(DeclarativeBase):
    """Declarative base shared by all ORM models."""


_connect_args = {"check_same_thread": False} if settings.database.url.startswith("sqlite") else {}

engine = create_engine(
    settings.database.url,
    pool_pre_ping=True,
    echo=settings.database.echo,
    connect_args=_connect_args,
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)


def get_db() -> Generator[Session, None, None]:
    """Yield a database session for dependency injection."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def create_tables() -> None:
    """Create all database tables."""
    # Ensure model modules are imported so that metadata is populated.
    import authgate.models  # noqa: F401

    Base.metadata.create_all(bind=engine)


def drop_tables() -> None:
    """Drop all database tables."""
    Base.metadata.drop_all(bind=engine)
