# nextstep/conftest.py
import pytest

from nextstep.core.auth import create_test_jwt, set_jwks_provider_for_tests
from nextstep.core.config import settings
from nextstep.core.database import create_all_tables, dispose_engine, init_engine

TEST_JWT_KEY = "test-clerk-jwt-key-0123456789abcdef"


@pytest.fixture(scope="function", autouse=True)
def test_db():
    """
    Fresh SQLite in-memory database per test.

    StaticPool keeps the single connection alive, so every session (and
    the TestClient threadpool) sees the same tables.
    """
    engine = init_engine("sqlite://")
    create_all_tables()
    yield engine
    dispose_engine()


@pytest.fixture(scope="function", autouse=True)
def test_settings(monkeypatch):
    """Deterministic auth and feature flags; no network, no real keys."""
    monkeypatch.setattr(settings, "CLERK_JWT_KEY", TEST_JWT_KEY)
    monkeypatch.setattr(settings, "CLERK_API_URL", None)
    monkeypatch.setattr(settings, "ATOMIC_ADMISSION", False)
    monkeypatch.setattr(settings, "CLIENT_URL", "http://localhost:5173")
    monkeypatch.setattr(settings, "STRIPE_PRICE_ID", "price_test_pro")
    yield settings
    set_jwks_provider_for_tests(None)


@pytest.fixture
def auth_headers():
    """Build bearer headers for an arbitrary test user."""
    def _make(sub: str = "user_alice", email: str = "alice@example.com", name: str = "Alice"):
        token = create_test_jwt(sub=sub, email=email, name=name, secret=TEST_JWT_KEY)
        return {"Authorization": f"Bearer {token}"}
    return _make
