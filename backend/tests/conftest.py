"""Shared test fixtures for identity and session tests."""

from datetime import datetime

import pyotp
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from worksage import models  # noqa: F401
from worksage.config import Settings, get_settings
from worksage.database import Base, get_db
from worksage.main import app
from worksage.models import User
from worksage.rate_limiter import limiter
from worksage.services.auth import AuthService, MfaService, SecretCipher
from worksage.timestamps import utcnow

# Passwords that satisfy every complexity rule (no blocklisted fragments)
STRONG_PASSWORD = "Sunflower#Orbit42"
OTHER_PASSWORD = "Glacier!Maple77"
THIRD_PASSWORD = "Velvet$Harbor93"

TEST_MFA_KEY = "9f1c2b7a4e6d8c0b3a5f7e9d1c3b5a7f9e1d3c5b7a9f1e3d5c7b9a1f3e5d7c9b"


def make_settings(**overrides) -> Settings:
    values = {
        "database_url": "sqlite:///:memory:",
        "jwt_secret_key": "test-secret-key-that-is-long-enough-for-hs256-signing",
        "mfa_encryption_key": TEST_MFA_KEY,
    }
    values.update(overrides)
    return Settings(**values)


class FakeClock:
    """Settable clock for services that take a ``clock`` callable."""

    def __init__(self, now: datetime | None = None):
        self.now = now or utcnow()

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta) -> None:
        self.now = self.now + delta


def create_user(
    db_session_maker,
    email: str = "jane.doe@example.com",
    password: str | None = STRONG_PASSWORD,
    **fields,
) -> str:
    """Insert a verified, active user directly and return its id."""
    db = db_session_maker()
    user = User(
        email=email,
        name=fields.pop("name", "Jane Doe"),
        password_hash=AuthService.hash_password(password) if password else None,
        password_history=fields.pop("password_history", []),
        email_verified=fields.pop("email_verified", True),
        **fields,
    )
    db.add(user)
    db.commit()
    user_id = user.id
    db.close()
    return user_id


def from_peer(asgi_app, host: str):
    """Wrap an ASGI app so HTTP requests arrive from ``host`` instead of ``testclient``."""

    async def wrapped(scope, receive, send):
        if scope["type"] == "http":
            scope = dict(scope, client=(host, 50000))
        await asgi_app(scope, receive, send)

    return wrapped


def auth_header(access_token: str) -> dict:
    return {"Authorization": f"Bearer {access_token}"}


def register_and_verify_user(
    test_client: TestClient,
    db_session_maker,
    email: str,
    password: str = STRONG_PASSWORD,
    name: str = "Jane Doe",
) -> dict:
    """Helper to register and verify a user, then login to get tokens."""
    response = test_client.post(
        "/api/auth/register",
        json={"email": email, "password": password, "name": name},
    )
    assert response.status_code == 201, response.json()

    db = db_session_maker()
    user = db.query(User).filter(User.email == email).first()
    user.email_verified = True
    db.commit()
    db.close()

    response = test_client.post(
        "/api/auth/login",
        json={"email": email, "password": password},
    )
    return response.json()


def enable_mfa(db_session_maker, user_id: str, email: str, settings: Settings) -> tuple[str, list[str]]:
    """Enroll a user in TOTP MFA. Returns (plaintext secret, backup codes)."""
    db = db_session_maker()
    service = MfaService(db, SecretCipher(settings.mfa_encryption_key), settings)
    setup = service.begin_setup(user_id, email)
    code = pyotp.TOTP(setup.manual_entry_key).now()
    backup_codes = service.complete_setup(user_id, code, setup.envelope)
    db.close()
    return setup.manual_entry_key, backup_codes


@pytest.fixture
def test_settings() -> Settings:
    return make_settings()


@pytest.fixture
def db_session_maker():
    """In-memory SQLite database with every table created."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def file_session_maker(tmp_path):
    """File-backed SQLite database for tests that use several connections at once."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'worksage.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def auth_client(db_session_maker, test_settings):
    """Create test client with in-memory database for auth tests.

    Yields a tuple of (TestClient, SessionMaker) for use in tests.
    """
    limiter.reset()

    def override_get_db():
        db = db_session_maker()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_settings] = lambda: test_settings

    with TestClient(app) as test_client:
        yield test_client, db_session_maker

    app.dependency_overrides.clear()
