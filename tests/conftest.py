"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
It ensures that the TESTING environment variable is set to prevent
loading the .env file during tests, and provides an isolated in-memory
database and rate limiter per test.
"""

import os

# CRITICAL: Set this before any imports that might load settings
# This prevents Pydantic from loading the .env file in tests
os.environ["TESTING"] = "true"
os.environ.setdefault("APP_ENV", "testing")

# Set default env vars that all tests might need
os.environ.setdefault("APP_PUBLIC_URL", "http://localhost:4321")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("DATABASE_AUTO_CREATE", "false")
os.environ.setdefault("AUTH_PBKDF2_ITERATIONS", "1000")
os.environ.setdefault("AUTH_PBKDF2_MIN_ITERATIONS", "1000")
os.environ.setdefault("RATE_LIMIT_STORE", "memory")
os.environ.setdefault("RATE_LIMIT_WORKERS", "2")

from collections.abc import Iterator

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

import authgate.models  # noqa: F401  (registers tables on Base.metadata)
from authgate.adapters.email.outbox import OutboxEmailSender
from authgate.adapters.kv.in_memory import InMemoryKeyValueStore
from authgate.adapters.rate_limit.limiter import build_rate_limiter
from authgate.core.app_factory import create_app
from authgate.core.auth import get_email_sender, get_password_hasher
from authgate.core.config import settings
from authgate.core.rate_limit import set_rate_limiter
from authgate.db.session import Base, get_db
from authgate.services.passwords import PasswordHasher


@pytest.fixture
def engine() -> Iterator[Engine]:
    """Fresh in-memory SQLite database shared across threads."""
    test_engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=test_engine)
    yield test_engine
    Base.metadata.drop_all(bind=test_engine)
    test_engine.dispose()


@pytest.fixture
def session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db_session(session_factory: sessionmaker) -> Iterator[Session]:
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def hasher() -> PasswordHasher:
    """Cheap hasher; its minimum sits below the default so rehash paths can be exercised."""
    return PasswordHasher(iterations=1000, salt_bytes=16, min_iterations=500)


@pytest.fixture
def outbox() -> OutboxEmailSender:
    return OutboxEmailSender()


@pytest.fixture
def kv_store() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


@pytest.fixture
def limiter(kv_store: InMemoryKeyValueStore) -> Iterator[None]:
    """Install a fresh process-wide limiter and stop its workers afterwards."""
    set_rate_limiter(build_rate_limiter(settings.rate_limit, kv_store))
    yield
    set_rate_limiter(None)


@pytest.fixture
def app(
    session_factory: sessionmaker,
    hasher: PasswordHasher,
    outbox: OutboxEmailSender,
    limiter: None,
) -> Iterator[FastAPI]:
    application = create_app()

    def override_get_db() -> Iterator[Session]:
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    application.dependency_overrides[get_db] = override_get_db
    application.dependency_overrides[get_password_hasher] = lambda: hasher
    application.dependency_overrides[get_email_sender] = lambda: outbox
    yield application
    application.dependency_overrides.clear()


@pytest.fixture
def client(app: FastAPI) -> TestClient:
    return TestClient(app)
