"""Pytest configuration and fixtures for chatstore tests.

Test isolation strategy:
- Every test gets its own in-memory SQLite database with the full schema
- Settings and the encryption service are rebuilt from a clean environment
- Tests that need a KEK use the encryption_service fixture
"""

from collections.abc import Generator

import pytest
from sqlalchemy import Engine
from sqlalchemy.orm import Session, sessionmaker

from chatstore.config import clear_settings_cache
from chatstore.db.engine import create_db_engine, create_schema
from chatstore.db.session import create_session_factory, reset_session_factory
from chatstore.services.envelope import (
    DekCache,
    EnvelopeEncryptionService,
    clear_encryption_service_cache,
)
from tests.factories import TEST_KEK

_ENV_VARS = (
    "DATABASE_URL",
    "ENCRYPTION_MASTER_KEY",
    "RETENTION_DAYS",
    "PERSIST_TRANSCRIPTS",
    "REDIS_URL",
    "CELERY_BROKER_URL",
    "CELERY_RESULT_BACKEND",
)


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch) -> Generator[None, None, None]:
    """Run every test with test settings and no cached singletons."""
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("CHATSTORE_ENV", "test")
    monkeypatch.setenv("DATABASE_URL", "sqlite://")
    clear_settings_cache()
    clear_encryption_service_cache()
    reset_session_factory()

    yield

    clear_settings_cache()
    clear_encryption_service_cache()
    reset_session_factory()


@pytest.fixture
def engine() -> Generator[Engine, None, None]:
    """Fresh in-memory database with the schema created."""
    engine = create_db_engine("sqlite://")
    create_schema(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine: Engine) -> sessionmaker[Session]:
    return create_session_factory(engine)


@pytest.fixture
def db_session(session_factory: sessionmaker[Session]) -> Generator[Session, None, None]:
    """Provide a session on the per-test database."""
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def encryption_service() -> EnvelopeEncryptionService:
    """Encryption service with a deterministic KEK and a private DEK cache."""
    return EnvelopeEncryptionService(TEST_KEK, cache=DekCache())


@pytest.fixture
def plaintext_service() -> EnvelopeEncryptionService:
    """Encryption service running without a KEK."""
    return EnvelopeEncryptionService(None)
