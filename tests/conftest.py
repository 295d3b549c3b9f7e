"""
Pytest configuration and fixtures for StudyForge backend tests.

Provides:
- Fresh in-memory database per test
- FastAPI test client with database and blob store overrides
- User, module and file fixtures
- Bearer tokens for authenticated requests
- Generative-model mock
"""

import pytest
import os
from typing import Generator, Dict
from unittest.mock import patch

# Set test environment before importing app
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["AUTH_JWT_SECRET"] = "test-secret-not-real"
os.environ["OPENAI_API_KEY"] = "test-key-not-real"
os.environ["ANTHROPIC_API_KEY"] = "test-key-not-real"
os.environ["RECONCILE_ON_STARTUP"] = "false"
os.environ.pop("AUTH_JWT_AUDIENCE", None)
os.environ.pop("SENTRY_DSN", None)

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from app.main import app
from app.database import Base, get_db
from app.models.models import User, Module, UploadedFile
from app.services.llm_service import llm_service
from app.services.storage import LocalBlobStore, get_blob_store
from tests.factories import make_user, make_module, make_file, make_token
from tests.mocks import mock_llm_complete


# =========================================================================
# Database Fixtures
# =========================================================================

@pytest.fixture(scope="function")
def test_engine():
    """
    Per-test in-memory database.

    Code under test commits and rolls back its own transactions, so each test
    gets a new database instead of an outer rollback.
    """
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def db(test_engine) -> Generator[Session, None, None]:
    """Provide a database session for each test"""
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)
    session = TestingSessionLocal()
    yield session
    session.close()


@pytest.fixture
def blob_store(tmp_path) -> LocalBlobStore:
    """Blob store rooted in the test's temp directory"""
    return LocalBlobStore(str(tmp_path / "blobs"))


@pytest.fixture(scope="function")
def client(db: Session, blob_store: LocalBlobStore) -> Generator[TestClient, None, None]:
    """Provide FastAPI test client with database and storage overrides"""
    def override_get_db():
        try:
            yield db
        finally:
            pass  # Don't close - let the fixture handle it

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_blob_store] = lambda: blob_store
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def reset_circuit_breaker():
    """Keep circuit breaker state from leaking between tests"""
    llm_service.circuit_breaker.reset()
    yield
    llm_service.circuit_breaker.reset()


# =========================================================================
# User, Module & File Fixtures
# =========================================================================

@pytest.fixture
def test_user(db: Session) -> User:
    """Create a free-tier test user"""
    return make_user(db, "test-user-123", "test@studyforge.app")


@pytest.fixture
def other_user(db: Session) -> User:
    """A second user for cross-tenant checks"""
    return make_user(db, "other-user-456", "other@studyforge.app")


@pytest.fixture
def test_module(db: Session, test_user: User) -> Module:
    return make_module(db, test_user, "module-bio-101")


@pytest.fixture
def test_file(db: Session, blob_store: LocalBlobStore, test_user: User, test_module: Module) -> UploadedFile:
    """A pending file whose blob holds plain course text"""
    return make_file(db, blob_store, test_user, test_module)


# =========================================================================
# Auth Fixtures
# =========================================================================

@pytest.fixture
def auth_headers(test_user: User) -> Dict[str, str]:
    return {"Authorization": f"Bearer {make_token(test_user.id)}"}


@pytest.fixture
def other_auth_headers(other_user: User) -> Dict[str, str]:
    return {"Authorization": f"Bearer {make_token(other_user.id)}"}


# =========================================================================
# Mock Fixtures
# =========================================================================

@pytest.fixture
def mock_llm():
    """Replace the generative model with a deterministic materials response"""
    mock = mock_llm_complete()
    with patch.object(llm_service, "complete", mock):
        yield mock
