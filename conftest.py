"""
Root conftest.py for pytest configuration and shared fixtures.
"""
import os
import pytest
from typing import Generator
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool
from fastapi.testclient import TestClient

# Set test environment BEFORE importing any app code
os.environ["ENV"] = "test"
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["TESTING"] = "true"

# Shared secret partners sign webhook deliveries with
os.environ["WEBHOOK_SECRET"] = "test_webhook_secret_value"

# Set JWT secret for operator auth tests (32+ chars required)
os.environ["JWT_SECRET_KEY"] = "test_secret_key_for_testing_purposes_only_do_not_use_in_production"


@pytest.fixture(scope="function")
def test_db_engine():
    """
    Create a test database engine using SQLite in-memory.

    Function-scoped: the pipeline commits on every write, so each test gets a
    fresh database instead of a rolled-back savepoint.
    """
    from services.ingest.app.db import Base, enable_sqlite_foreign_keys
    # Import all models so they're registered with Base.metadata
    from services.ingest.app.models.event_types import EventType  # noqa: F401
    from services.ingest.app.models.events import AuditLog, DerivedRequest, EventLog  # noqa: F401
    from services.ingest.app.models.identities import Identity  # noqa: F401
    from services.ingest.app.models.webhook_requests import WebhookRequest  # noqa: F401

    # Use in-memory SQLite for tests (fast and isolated)
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,  # Required for SQLite in-memory
        echo=False,
    )
    # The fan-out writer depends on the actor foreign key being enforced
    enable_sqlite_foreign_keys(engine)

    # Create all tables
    Base.metadata.create_all(engine)

    yield engine

    # Cleanup
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture(scope="function")
def db_session(test_db_engine) -> Generator[Session, None, None]:
    """Create a new database session for a test."""
    SessionLocal = sessionmaker(bind=test_db_engine, expire_on_commit=False)
    session = SessionLocal()

    yield session

    session.close()


@pytest.fixture(scope="function")
def client(test_db_engine, db_session: Session, monkeypatch) -> Generator[TestClient, None, None]:
    """
    Create a FastAPI test client with database overrides.
    """
    # Must import here to ensure test environment is set
    import services.ingest.app.db as db_module
    import services.ingest.app.main as main_module

    # The test owns the engine; keep the app's shutdown hook from disposing it
    monkeypatch.setattr(main_module, "dispose_engine", lambda: None)
    from services.ingest.app.main import app
    from services.ingest.app.api.deps import get_db_session

    # Override the global engine and sessionmaker
    original_engine = db_module._engine
    original_sessionmaker = db_module._SessionLocal

    db_module._engine = test_db_engine
    db_module._SessionLocal = sessionmaker(bind=test_db_engine, expire_on_commit=False)

    # Override the database session dependency
    def override_get_db():
        try:
            yield db_session
        finally:
            pass  # Don't close, managed by db_session fixture

    app.dependency_overrides[get_db_session] = override_get_db

    with TestClient(app) as test_client:
        yield test_client

    # Restore original state
    app.dependency_overrides.clear()
    db_module._engine = original_engine
    db_module._SessionLocal = original_sessionmaker


@pytest.fixture(autouse=True)
def reset_environment():
    """Reset environment variables after each test."""
    original_env = os.environ.copy()
    yield
    os.environ.clear()
    os.environ.update(original_env)


@pytest.fixture(autouse=True)
def reset_settings_cache():
    """Settings are cached process-wide; drop the cache around every test."""
    from services.ingest.app.core.config import get_settings

    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture(autouse=True)
def reset_operator_rate_limits():
    """Clear slowapi's in-memory counters so diagnostics limits don't leak."""
    from services.ingest.app.core.limiter import limiter

    limiter.reset()
    yield
    limiter.reset()


@pytest.fixture
def webhook_secret() -> str:
    return os.environ["WEBHOOK_SECRET"]


@pytest.fixture
def operator_token() -> str:
    """A valid operator JWT for diagnostics routes."""
    from services.ingest.app.core.auth import create_access_token

    return create_access_token({"sub": "oncall@example.com"})
