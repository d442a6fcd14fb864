"""
Pytest configuration and shared fixtures for the MFA gateway tests.

This module provides:
- Environment for Settings (must be set before any ``app`` import)
- A throwaway SQLite database recreated for every test
- A recording mailer standing in for SMTP
- A FastAPI TestClient wired to both
"""
import base64
import os
import tempfile
from pathlib import Path

import pytest

_TMP_DIR = Path(tempfile.mkdtemp(prefix="mfa-gateway-tests-"))
_DB_FILE = _TMP_DIR / "test.db"

os.environ.setdefault("JWT_SECRET", "test-jwt-secret")
os.environ.setdefault("EMAIL_ENCRYPTION_KEY", base64.urlsafe_b64encode(b"k" * 32).decode())
os.environ.setdefault("EMAIL_LOOKUP_KEY", "test-lookup-key")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_DB_FILE}"

from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402

from app.core.db import Base, SessionLocal  # noqa: E402
from app.core.errors import DeliveryError  # noqa: E402
from app.core.security import get_email_cipher  # noqa: E402
from app.main import app  # noqa: E402
from app.models import MfaCode, User  # noqa: E402,F401
from app.services.credential_store import CredentialStore  # noqa: E402
from app.services.mailer import get_mailer  # noqa: E402


STRONG_PASSWORD = "Abcdef12!@"


# ============================================
# Database Fixtures
# ============================================

@pytest.fixture(autouse=True)
def fresh_schema():
    """
    Recreate all tables before each test.
    Uses the sync sqlite driver so no event loop is involved.
    """
    sync_engine = create_engine(f"sqlite:///{_DB_FILE}")
    Base.metadata.drop_all(sync_engine)
    Base.metadata.create_all(sync_engine)
    yield
    sync_engine.dispose()


@pytest.fixture
async def db_session():
    async with SessionLocal() as session:
        yield session


@pytest.fixture
def cipher():
    return get_email_cipher()


@pytest.fixture
def store(db_session, cipher):
    return CredentialStore(db_session, cipher)


# ============================================
# Mail Fixtures
# ============================================

class RecordingMailer:
    """Collects (recipient, code) pairs instead of talking SMTP."""

    def __init__(self):
        self.sent: list[tuple[str, str]] = []
        self.fail = False

    async def send_code(self, recipient: str, code: str) -> None:
        self.sent.append((recipient, code))
        if self.fail:
            raise DeliveryError("smtp.example.com:587 refused connection")

    @property
    def last_code(self) -> str:
        return self.sent[-1][1]


@pytest.fixture
def mailer():
    return RecordingMailer()


# ============================================
# API Fixtures
# ============================================

@pytest.fixture
def client(mailer):
    app.dependency_overrides[get_mailer] = lambda: mailer
    test_client = TestClient(app)
    yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def sample_user():
    return {
        "username": "alice",
        "email": "alice@x.com",
        "password": STRONG_PASSWORD,
        "confirmPassword": STRONG_PASSWORD,
    }
