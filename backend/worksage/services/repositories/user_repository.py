"""User data access layer."""

import logging
from datetime import datetime

from sqlalchemy import func, update

from worksage.models import User

from .base import BaseRepository

logger = logging.getLogger(__name__)


class UserRepository(BaseRepository):
    """Centralized user data access.

    Naming conventions:
    - find_* : Query that may return None
    - get_* : Query that raises exception if missing
    """

    def find_by_id(self, user_id: str) -> User | None:
        """Find user by primary key."""
        return self._read(
            "user.find_by_id",
            lambda: self._db.query(User).filter(User.id == user_id).first(),
        )

    def find_by_email(self, email: str) -> User | None:
        """Find user by email (case-insensitive)."""
        normalized = email.strip().lower()
        return self._read(
            "user.find_by_email",
            lambda: self._db.query(User).filter(func.lower(User.email) == normalized).first(),
        )

    def lock_by_id(self, user_id: str) -> User | None:
        """Load a user with a row lock (SELECT ... FOR UPDATE) for the rest of the transaction."""
        return self._read(
            "user.lock_by_id",
            lambda: self._db.query(User)
            .filter(User.id == user_id)
            .with_for_update()
            .populate_existing()
            .first(),
        )

    def reload(self, user_id: str) -> User | None:
        """Re-read a user, discarding any state cached in the identity map."""
        return self._read(
            "user.reload",
            lambda: self._db.query(User).filter(User.id == user_id).populate_existing().first(),
        )

    def save(self, user: User) -> User:
        """Stage a new or modified user; the caller commits."""
        self._db.add(user)
        return user

    def record_failed_login(self, user_id: str, max_attempts: int, lock_until: datetime) -> bool:
        """Count a failed password attempt; lock the account at the limit. Returns True if locked."""
        self._db.execute(
            update(User)
            .where(User.id == user_id)
            .values(failed_login_attempts=User.failed_login_attempts + 1)
            .execution_options(synchronize_session=False)
        )
        locked = self._db.execute(
            update(User)
            .where(User.id == user_id, User.failed_login_attempts >= max_attempts)
            .values(locked_until=lock_until)
            .execution_options(synchronize_session=False)
        )
        return locked.rowcount == 1

    def clear_failed_logins(self, user_id: str) -> None:
        self._db.execute(
            update(User)
            .where(User.id == user_id)
            .where((User.failed_login_attempts != 0) | User.locked_until.is_not(None))
            .values(failed_login_attempts=0, locked_until=None)
            .execution_options(synchronize_session=False)
        )
