"""Access/refresh token issuance and the Session lifecycle.

Access tokens are short-lived HS256 JWTs carrying the session id (``sid``).
Refresh tokens are 256-bit random hex strings; only their SHA-256 is stored,
so neither token can be reconstructed from the other or from the database.
TokenService is the only writer of Session rows.
"""

import logging
import secrets
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import uuid4

import jwt
from sqlalchemy.orm import Session

from worksage.config import Settings
from worksage.constants import TokenType
from worksage.models import Session as UserSession
from worksage.models import User
from worksage.services.repositories import SessionRepository, UserRepository
from worksage.timestamps import as_utc, utcnow

from .auth_service import AuthService
from .errors import (
    AccountDeactivated,
    InvalidSession,
    InvalidToken,
    SessionSecurityViolation,
    TokenExpired,
    UserNotFound,
)
from .locks import PrincipalLocks, principal_locks

logger = logging.getLogger(__name__)

REFRESH_TOKEN_BYTES = 32


@dataclass(frozen=True)
class IssuedSession:
    access_token: str
    refresh_token: str
    session_id: str


@dataclass(frozen=True)
class RefreshResult:
    access_token: str
    user: User


class TokenService:
    """Mints, refreshes and revokes the access/refresh token pair."""

    def __init__(
        self,
        db: Session,
        settings: Settings,
        clock: Callable[[], datetime] = utcnow,
        locks: PrincipalLocks = principal_locks,
    ) -> None:
        self._db = db
        self._settings = settings
        self._clock = clock
        self._locks = locks
        self._users = UserRepository(db)
        self._sessions = SessionRepository(db)

    def create_access_token(self, user_id: str, session_id: str) -> str:
        """Create a signed access token bound to a session."""
        now = self._clock()
        payload = {
            "sub": user_id,
            "sid": session_id,
            "type": TokenType.ACCESS,
            "iss": self._settings.jwt_issuer,
            "aud": self._settings.jwt_audience,
            "iat": now,
            "exp": now + timedelta(minutes=self._settings.access_token_expire_minutes),
            "jti": uuid4().hex,
        }
        return jwt.encode(
            payload, self._settings.jwt_secret_key, algorithm=self._settings.jwt_algorithm
        )

    @staticmethod
    def generate_refresh_token() -> str:
        return secrets.token_hex(REFRESH_TOKEN_BYTES)

    def create_session(
        self, user_id: str, ip_address: str | None, user_agent: str | None
    ) -> IssuedSession:
        """Open a session for a user who has passed every required factor.

        With the single-session policy on, every other active session of the
        user is deactivated in the same transaction as the insert. The
        in-process lock and the user row lock keep two concurrent logins from
        both ending up active.
        """
        with self._locks.hold(user_id):
            user = self._users.lock_by_id(user_id)
            if user is None:
                raise UserNotFound()

            if self._settings.single_session_per_user:
                closed = self._sessions.deactivate_all_for_user(user_id)
                if closed:
                    logger.info(f"Deactivated {closed} prior session(s) for user {user_id}")

            now = self._clock()
            session_id = str(uuid4())
            access_token = self.create_access_token(user_id, session_id)
            refresh_token = self.generate_refresh_token()

            self._sessions.create(
                UserSession(
                    id=session_id,
                    user_id=user_id,
                    refresh_token_hash=AuthService.hash_token(refresh_token),
                    access_token_hash=AuthService.hash_token(access_token),
                    ip_address=ip_address,
                    user_agent=user_agent,
                    is_active=True,
                    expires_at=now + timedelta(days=self._settings.refresh_token_expire_days),
                    last_accessed_at=now,
                )
            )
            user.last_login_at = now
            self._db.commit()

        logger.info(f"Session {session_id} created for user {user_id}")
        return IssuedSession(
            access_token=access_token, refresh_token=refresh_token, session_id=session_id
        )

    def refresh_access_token(
        self, refresh_token: str, ip_address: str | None, user_agent: str | None
    ) -> RefreshResult:
        """Mint a new access token for the session holding this refresh token.

        The refresh token itself is not rotated.
        """
        session = self._sessions.find_by_refresh_hash(AuthService.hash_token(refresh_token))
        if session is None or not session.is_active:
            raise InvalidSession()

        now = self._clock()
        if as_utc(session.expires_at) <= now:
            session.is_active = False
            self._db.commit()
            raise InvalidSession()

        if self._settings.strict_session_binding and (
            session.ip_address != ip_address or session.user_agent != user_agent
        ):
            session.is_active = False
            self._db.commit()
            logger.warning(
                f"Session {session.id} binding mismatch: ip {session.ip_address} -> {ip_address}"
            )
            raise SessionSecurityViolation()

        user = session.user
        if user is None:
            raise UserNotFound()
        if not user.is_active:
            raise AccountDeactivated()

        access_token = self.create_access_token(user.id, session.id)
        session.access_token_hash = AuthService.hash_token(access_token)
        session.last_accessed_at = now
        self._sessions.update(session)
        self._db.commit()

        return RefreshResult(access_token=access_token, user=user)

    def find_session(self, refresh_token: str) -> UserSession | None:
        """Look up the session holding a refresh token, whatever its state."""
        return self._sessions.find_by_refresh_hash(AuthService.hash_token(refresh_token))

    def revoke_session(self, refresh_token: str) -> bool:
        """Deactivate the session holding this refresh token. Safe to repeat."""
        changed = self._sessions.deactivate_by_refresh_hash(AuthService.hash_token(refresh_token))
        self._db.commit()
        return changed > 0

    def revoke_session_by_id(self, session_id: str) -> bool:
        changed = self._sessions.deactivate_by_id(session_id)
        self._db.commit()
        return changed > 0

    def revoke_all_sessions(self, user_id: str) -> int:
        """Deactivate every active session of a user. Safe to repeat."""
        with self._locks.hold(user_id):
            changed = self._sessions.deactivate_all_for_user(user_id)
            self._db.commit()
        if changed:
            logger.info(f"Revoked {changed} session(s) for user {user_id}")
        return changed

    def list_active_sessions(self, user_id: str) -> list[UserSession]:
        return self._sessions.find_active_for_user(user_id, self._clock())

    def verify_access_token(self, token: str) -> dict:
        """Validate signature, issuer, audience, expiry and token type.

        Raises:
            TokenExpired: the token is otherwise valid but past its expiry.
            InvalidToken: bad signature, malformed, wrong issuer/audience/type.
        """
        try:
            claims = jwt.decode(
                token,
                self._settings.jwt_secret_key,
                algorithms=[self._settings.jwt_algorithm],
                issuer=self._settings.jwt_issuer,
                audience=self._settings.jwt_audience,
                options={"require": ["exp", "iat", "sub", "type"]},
            )
        except jwt.ExpiredSignatureError:
            logger.debug("Token expired")
            raise TokenExpired() from None
        except jwt.InvalidTokenError as e:
            logger.debug(f"Invalid token: {e}")
            raise InvalidToken() from None

        if claims.get("type") != TokenType.ACCESS:
            raise InvalidToken("Invalid token type.")
        return claims
