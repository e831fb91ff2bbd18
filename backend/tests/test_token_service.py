"""Tests for access/refresh token issuance and the session lifecycle."""

import threading
from datetime import timedelta

import jwt
import pytest

from worksage.models import Session as UserSession
from worksage.models import User
from worksage.services.auth import AuthService, TokenService
from worksage.services.auth.errors import (
    AccountDeactivated,
    InvalidSession,
    InvalidToken,
    SessionSecurityViolation,
    TokenExpired,
    UserNotFound,
)
from worksage.services.auth.locks import PrincipalLocks
from worksage.timestamps import as_utc, utcnow
from tests.conftest import FakeClock, create_user, make_settings


@pytest.fixture
def user_id(db_session_maker):
    return create_user(db_session_maker)


@pytest.fixture
def db(db_session_maker):
    session = db_session_maker()
    yield session
    session.close()


def _sessions(db, user_id):
    db.expire_all()
    return db.query(UserSession).filter(UserSession.user_id == user_id).all()


class TestCreateSession:
    """Tests for opening a session after a successful login."""

    def test_issues_access_and_refresh_tokens(self, db, user_id, test_settings):
        """Access token is a signed JWT bound to the session; refresh token is 256-bit hex."""
        issued = TokenService(db, test_settings).create_session(user_id, "10.0.0.1", "pytest")

        assert len(issued.refresh_token) == 64
        int(issued.refresh_token, 16)

        claims = jwt.decode(
            issued.access_token,
            test_settings.jwt_secret_key,
            algorithms=["HS256"],
            audience="worksage-users",
            issuer="worksage",
        )
        assert claims["sub"] == user_id
        assert claims["sid"] == issued.session_id
        assert claims["type"] == "access"
        assert claims["exp"] - claims["iat"] == 15 * 60
        assert claims["jti"]

    def test_stores_only_token_hashes(self, db, user_id, test_settings):
        """Neither token is stored in plaintext."""
        issued = TokenService(db, test_settings).create_session(user_id, "10.0.0.1", "pytest")

        (session,) = _sessions(db, user_id)
        assert session.id == issued.session_id
        assert session.refresh_token_hash == AuthService.hash_token(issued.refresh_token)
        assert session.access_token_hash == AuthService.hash_token(issued.access_token)
        assert issued.refresh_token not in (session.refresh_token_hash, session.access_token_hash)
        assert session.is_active is True
        assert session.ip_address == "10.0.0.1"
        assert session.user_agent == "pytest"

    def test_session_expires_after_refresh_lifetime(self, db, user_id, test_settings):
        clock = FakeClock()
        TokenService(db, test_settings, clock=clock).create_session(user_id, None, None)

        (session,) = _sessions(db, user_id)
        assert as_utc(session.expires_at) == clock.now + timedelta(days=7)

    def test_unknown_user_rejected(self, db, test_settings):
        with pytest.raises(UserNotFound):
            TokenService(db, test_settings).create_session("missing-user", None, None)

    def test_single_session_policy_deactivates_previous(self, db, user_id, test_settings):
        """A second login leaves exactly one active session and kills the first refresh token."""
        service = TokenService(db, test_settings)
        first = service.create_session(user_id, "10.0.0.1", "laptop")
        second = service.create_session(user_id, "10.0.0.2", "phone")

        active = [s for s in _sessions(db, user_id) if s.is_active]
        assert [s.id for s in active] == [second.session_id]

        with pytest.raises(InvalidSession):
            service.refresh_access_token(first.refresh_token, "10.0.0.1", "laptop")

    def test_multiple_sessions_allowed_when_policy_off(self, db, user_id):
        settings = make_settings(single_session_per_user=False)
        service = TokenService(db, settings)
        service.create_session(user_id, None, "laptop")
        service.create_session(user_id, None, "phone")

        assert sum(s.is_active for s in _sessions(db, user_id)) == 2

    def test_concurrent_logins_leave_one_active_session(self, file_session_maker):
        """Parallel create_session calls for one user never leave two active sessions."""
        user_id = create_user(file_session_maker)
        settings = make_settings()
        locks = PrincipalLocks()
        barrier = threading.Barrier(4)
        errors = []

        def login(n):
            db = file_session_maker()
            try:
                barrier.wait()
                TokenService(db, settings, locks=locks).create_session(user_id, None, f"agent-{n}")
            except Exception as e:  # noqa: BLE001
                errors.append(e)
            finally:
                db.close()

        threads = [threading.Thread(target=login, args=(n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        db = file_session_maker()
        sessions = db.query(UserSession).filter(UserSession.user_id == user_id).all()
        assert len(sessions) == 4
        assert sum(s.is_active for s in sessions) == 1
        assert len(locks) == 0
        db.close()


class TestRefreshAccessToken:
    """Tests for minting access tokens from a refresh token."""

    def test_refresh_keeps_session_and_refresh_token(self, db, user_id, test_settings):
        """New access token carries the same sid; the refresh token keeps working."""
        clock = FakeClock(utcnow() - timedelta(minutes=10))
        service = TokenService(db, test_settings, clock=clock)
        issued = service.create_session(user_id, "10.0.0.1", "pytest")

        clock.advance(timedelta(minutes=10))
        result = service.refresh_access_token(issued.refresh_token, "10.0.0.1", "pytest")

        assert result.user.id == user_id
        assert result.access_token != issued.access_token
        claims = service.verify_access_token(result.access_token)
        assert claims["sid"] == issued.session_id

        (session,) = _sessions(db, user_id)
        assert session.access_token_hash == AuthService.hash_token(result.access_token)
        assert as_utc(session.last_accessed_at) == clock.now

        again = service.refresh_access_token(issued.refresh_token, "10.0.0.1", "pytest")
        assert again.user.id == user_id

    def test_unknown_refresh_token(self, db, user_id, test_settings):
        with pytest.raises(InvalidSession):
            TokenService(db, test_settings).refresh_access_token("ab" * 32, None, None)

    def test_revoked_session_rejected(self, db, user_id, test_settings):
        service = TokenService(db, test_settings)
        issued = service.create_session(user_id, None, None)
        service.revoke_session(issued.refresh_token)

        with pytest.raises(InvalidSession):
            service.refresh_access_token(issued.refresh_token, None, None)

    def test_expired_session_is_deactivated(self, db, user_id, test_settings):
        """An active session past its expiry is rejected and marked inactive."""
        past = FakeClock(utcnow() - timedelta(days=8))
        issued = TokenService(db, test_settings, clock=past).create_session(user_id, None, None)

        with pytest.raises(InvalidSession):
            TokenService(db, test_settings).refresh_access_token(issued.refresh_token, None, None)

        (session,) = _sessions(db, user_id)
        assert session.is_active is False

    def test_strict_binding_rejects_different_ip(self, db, user_id):
        settings = make_settings(strict_session_binding=True)
        service = TokenService(db, settings)
        issued = service.create_session(user_id, "10.0.0.1", "pytest")

        with pytest.raises(SessionSecurityViolation):
            service.refresh_access_token(issued.refresh_token, "203.0.113.9", "pytest")

        (session,) = _sessions(db, user_id)
        assert session.is_active is False

    def test_strict_binding_rejects_different_user_agent(self, db, user_id):
        settings = make_settings(strict_session_binding=True)
        service = TokenService(db, settings)
        issued = service.create_session(user_id, "10.0.0.1", "pytest")

        with pytest.raises(SessionSecurityViolation):
            service.refresh_access_token(issued.refresh_token, "10.0.0.1", "curl")

    def test_lenient_binding_allows_network_change(self, db, user_id, test_settings):
        service = TokenService(db, test_settings)
        issued = service.create_session(user_id, "10.0.0.1", "pytest")

        result = service.refresh_access_token(issued.refresh_token, "203.0.113.9", "other")
        assert result.user.id == user_id

    def test_deactivated_user_cannot_refresh(self, db, user_id, test_settings):
        service = TokenService(db, test_settings)
        issued = service.create_session(user_id, None, None)

        user = db.get(User, user_id)
        user.is_active = False
        db.commit()

        with pytest.raises(AccountDeactivated):
            service.refresh_access_token(issued.refresh_token, None, None)


class TestRevocation:
    """Tests for logout and logout-all."""

    def test_revoke_is_idempotent(self, db, user_id, test_settings):
        service = TokenService(db, test_settings)
        issued = service.create_session(user_id, None, None)

        assert service.revoke_session(issued.refresh_token) is True
        assert service.revoke_session(issued.refresh_token) is False
        assert service.revoke_session("not-a-token") is False

    def test_revoke_all_sessions(self, db, user_id):
        service = TokenService(db, make_settings(single_session_per_user=False))
        for agent in ("laptop", "phone", "tablet"):
            service.create_session(user_id, None, agent)

        assert service.revoke_all_sessions(user_id) == 3
        assert service.revoke_all_sessions(user_id) == 0
        assert not any(s.is_active for s in _sessions(db, user_id))

    def test_revoke_by_id(self, db, user_id, test_settings):
        service = TokenService(db, test_settings)
        issued = service.create_session(user_id, None, None)

        assert service.revoke_session_by_id(issued.session_id) is True
        assert service.revoke_session_by_id(issued.session_id) is False

    def test_list_active_sessions_hides_inactive_and_expired(self, db, user_id):
        settings = make_settings(single_session_per_user=False)
        old = FakeClock(utcnow() - timedelta(days=8))
        TokenService(db, settings, clock=old).create_session(user_id, None, "stale")

        service = TokenService(db, settings)
        revoked = service.create_session(user_id, None, "revoked")
        live = service.create_session(user_id, None, "live")
        service.revoke_session(revoked.refresh_token)

        sessions = service.list_active_sessions(user_id)
        assert [s.id for s in sessions] == [live.session_id]


class TestVerifyAccessToken:
    """Tests for access token validation."""

    def test_valid_token(self, db, user_id, test_settings):
        service = TokenService(db, test_settings)
        token = service.create_access_token(user_id, "session-1")

        claims = service.verify_access_token(token)
        assert claims["sub"] == user_id
        assert claims["sid"] == "session-1"

    def test_expired_token(self, db, test_settings):
        """A token issued 20 minutes ago is past its 15 minute lifetime."""
        issued_at = FakeClock(utcnow() - timedelta(minutes=20))
        token = TokenService(db, test_settings, clock=issued_at).create_access_token("u", "s")

        with pytest.raises(TokenExpired) as exc_info:
            TokenService(db, test_settings).verify_access_token(token)
        assert exc_info.value.code == "TOKEN_EXPIRED"

    def test_token_still_valid_before_expiry(self, db, test_settings):
        issued_at = FakeClock(utcnow() - timedelta(minutes=14))
        token = TokenService(db, test_settings, clock=issued_at).create_access_token("u", "s")

        assert TokenService(db, test_settings).verify_access_token(token)["sub"] == "u"

    def test_wrong_signature(self, db, test_settings):
        other = make_settings(jwt_secret_key="another-secret-key-that-is-also-long-enough-to-sign")
        token = TokenService(db, other).create_access_token("u", "s")

        with pytest.raises(InvalidToken) as exc_info:
            TokenService(db, test_settings).verify_access_token(token)
        assert exc_info.value.code == "INVALID_TOKEN"

    def test_wrong_audience(self, db, test_settings):
        other = make_settings(jwt_audience="someone-else")
        token = TokenService(db, other).create_access_token("u", "s")

        with pytest.raises(InvalidToken):
            TokenService(db, test_settings).verify_access_token(token)

    def test_wrong_issuer(self, db, test_settings):
        other = make_settings(jwt_issuer="not-worksage")
        token = TokenService(db, other).create_access_token("u", "s")

        with pytest.raises(InvalidToken):
            TokenService(db, test_settings).verify_access_token(token)

    def test_wrong_token_type(self, db, test_settings):
        now = utcnow()
        token = jwt.encode(
            {
                "sub": "u",
                "type": "refresh",
                "iss": "worksage",
                "aud": "worksage-users",
                "iat": now,
                "exp": now + timedelta(minutes=5),
            },
            test_settings.jwt_secret_key,
            algorithm="HS256",
        )

        with pytest.raises(InvalidToken):
            TokenService(db, test_settings).verify_access_token(token)

    def test_garbage(self, db, test_settings):
        with pytest.raises(InvalidToken):
            TokenService(db, test_settings).verify_access_token("not.a.jwt")
