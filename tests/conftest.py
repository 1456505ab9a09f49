"""Test configuration for phi-guard.

Registers the compliance markers and provides shared fixtures: a fixed
test key, an injectable clock, isolated audit loggers and in-memory and
SQLite-backed repositories.
"""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.pool import StaticPool

from phi_guard.config import reload_settings
from phi_guard.config.session_config import SessionPolicy
from phi_guard.repositories import (
    InMemoryRoleRepository,
    InMemorySessionRepository,
    create_session_factory,
)
from phi_guard.security import PHICipher
from phi_guard.utils.logging import AuditLogger, setup_logging

# Test key only, never used outside this suite
TEST_HEX_KEY = "0123456789abcdef" * 4
OTHER_HEX_KEY = "fedcba9876543210" * 4

# Tuesday 10:00 UTC
TUESDAY_MORNING = datetime(2024, 3, 5, 10, 0, tzinfo=timezone.utc)


def pytest_configure(config):
    """Register custom markers for compliance."""
    config.addinivalue_line(
        "markers", "hipaa_required: mark test as requiring HIPAA compliance"
    )
    config.addinivalue_line(
        "markers", "emergency_access: mark test as handling emergency access"
    )
    config.addinivalue_line(
        "markers", "phi_encryption: mark test as requiring PHI encryption"
    )
    config.addinivalue_line(
        "markers", "audit_required: mark test as requiring audit logging"
    )


class FixedClock:
    """Manually advanced clock."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture(scope="session", autouse=True)
def configure_logging():
    """Configure structured logging once for the run."""
    setup_logging()


@pytest.fixture(autouse=True)
def fresh_settings(monkeypatch):
    """Isolate every test from the caller's environment."""
    for var in ("PHI_ENCRYPTION_KEY", "ENVIRONMENT", "DATABASE_URL"):
        monkeypatch.delenv(var, raising=False)
    reload_settings()
    yield
    reload_settings()


@pytest.fixture
def clock():
    """Clock fixed at a Tuesday morning."""
    return FixedClock(TUESDAY_MORNING)


@pytest.fixture
def audit():
    """Isolated audit logger."""
    return AuditLogger()


@pytest.fixture
def cipher(audit):
    """Cipher with the test key."""
    return PHICipher.from_hex(TEST_HEX_KEY, audit=audit)


@pytest.fixture
def session_policy():
    """Default session policy, independent of the environment."""
    return SessionPolicy()


@pytest.fixture
def session_repository():
    """In-memory session repository."""
    return InMemorySessionRepository()


@pytest.fixture
def role_repository():
    """In-memory role repository."""
    return InMemoryRoleRepository()


@pytest.fixture
def db_session_factory():
    """Session factory on a private in-memory SQLite database."""
    return create_session_factory(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
