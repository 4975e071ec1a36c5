"""Pytest configuration and shared fixtures."""
import os

# Must be set before healthportal.core.config is imported
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("JWT_SECRET_KEY", "test-access-secret")
os.environ.setdefault("JWT_REFRESH_SECRET_KEY", "test-refresh-secret")
os.environ.setdefault("TOKEN_REVOCATION_ENABLED", "false")
os.environ.setdefault("SEED_DEMO_USERS", "false")

import pytest
from unittest.mock import Mock
from fastapi.testclient import TestClient

from healthportal.core.config import Settings
from healthportal.core.tokens import TokenService
from healthportal.infrastructure.database import create_db_engine, create_session_factory, init_db
from healthportal.infrastructure.user_store import UserStore
from healthportal.services.auth_service import AuthService
from healthportal.services.notifications import EmailNotifier

TEST_PASSWORD = "secret123"


@pytest.fixture
def settings():
    """Test settings: in-memory database, cheap bcrypt, distinct secrets."""
    return Settings()


@pytest.fixture
def mock_notifier():
    """Email notifier that records calls instead of sending."""
    notifier = Mock(spec=EmailNotifier)
    notifier.send_password_reset.return_value = True
    notifier.send_email_verification.return_value = True
    return notifier


@pytest.fixture
def user_store():
    """Credential store on a fresh in-memory SQLite database."""
    engine = create_db_engine("sqlite://")
    init_db(engine)
    yield UserStore(create_session_factory(engine))
    engine.dispose()


@pytest.fixture
def token_service():
    return TokenService("test-access-secret", "test-refresh-secret")


@pytest.fixture
def auth_service(user_store, token_service, mock_notifier):
    return AuthService(user_store, token_service, notifier=mock_notifier, bcrypt_rounds=4)


@pytest.fixture
def app(settings, mock_notifier):
    """Fresh application per test, each with its own in-memory database."""
    from main import create_app
    return create_app(settings, notifier=mock_notifier)


@pytest.fixture
def test_client(app):
    """FastAPI test client."""
    with TestClient(app) as client:
        yield client


def _registration_payload(email="ann@example.com", role="patient", **overrides):
    payload = {
        "email": email,
        "password": TEST_PASSWORD,
        "firstName": "Ann",
        "lastName": "Lee",
        "role": role,
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def register_user(test_client):
    """Register a user through the API and return the response ``data``."""
    def _register(email="ann@example.com", role="patient", **overrides):
        response = test_client.post("/api/auth/register", json=_registration_payload(email, role, **overrides))
        assert response.status_code == 201, response.json()
        return response.json()["data"]
    return _register


@pytest.fixture
def auth_headers():
    def _headers(token):
        return {"Authorization": f"Bearer {token}"}
    return _headers


@pytest.fixture
def mock_redis():
    """Mock Redis client for the revocation list."""
    mock_client = Mock()
    mock_client.set.return_value = True
    mock_client.exists.return_value = 0
    mock_client.ping.return_value = True
    return mock_client


@pytest.fixture
def registration_payload():
    """Builder for ``POST /auth/register`` bodies."""
    return _registration_payload
