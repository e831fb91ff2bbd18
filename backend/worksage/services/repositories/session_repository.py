"""Session data access layer."""

from datetime import datetime

from sqlalchemy import update

from worksage.models import Session as UserSession

from .base import BaseRepository


class SessionRepository(BaseRepository):
    """Login sessions keyed by the SHA-256 of their refresh token."""

    def create(self, session: UserSession) -> UserSession:
        """Stage a new session; the caller commits."""
        self._db.add(session)
        return session

    def find_by_id(self, session_id: str) -> UserSession | None:
        return self._read(
            "session.find_by_id",
            lambda: self._db.query(UserSession).filter(UserSession.id == session_id).first(),
        )

    def find_by_refresh_hash(self, refresh_token_hash: str) -> UserSession | None:
        """Find a session by refresh token hash, active or not."""
        return self._read(
            "session.find_by_refresh_hash",
            lambda: self._db.query(UserSession)
            .filter(UserSession.refresh_token_hash == refresh_token_hash)
            .first(),
        )

    def find_active_for_user(self, user_id: str, now: datetime) -> list[UserSession]:
        """Active, unexpired sessions of a user, newest first."""
        return self._read(
            "session.find_active_for_user",
            lambda: self._db.query(UserSession)
            .filter(
                UserSession.user_id == user_id,
                UserSession.is_active.is_(True),
                UserSession.expires_at > now,
            )
            .order_by(UserSession.created_at.desc())
            .all(),
        )

    def update(self, session: UserSession) -> UserSession:
        """Stage changes to an existing session; the caller commits."""
        self._db.add(session)
        return session

    def deactivate_by_refresh_hash(self, refresh_token_hash: str) -> int:
        """Deactivate the session holding this refresh token. Returns rows changed."""
        result = self._db.execute(
            update(UserSession)
            .where(
                UserSession.refresh_token_hash == refresh_token_hash,
                UserSession.is_active.is_(True),
            )
            .values(is_active=False)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def deactivate_by_id(self, session_id: str) -> int:
        result = self._db.execute(
            update(UserSession)
            .where(UserSession.id == session_id, UserSession.is_active.is_(True))
            .values(is_active=False)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def deactivate_all_for_user(self, user_id: str) -> int:
        """Deactivate every active session of a user. Returns rows changed."""
        result = self._db.execute(
            update(UserSession)
            .where(UserSession.user_id == user_id, UserSession.is_active.is_(True))
            .values(is_active=False)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount
