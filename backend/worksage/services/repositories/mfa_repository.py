"""MFA settings, backup codes and login challenges data access layer."""

from datetime import datetime

from sqlalchemy import delete, func, select, update

from worksage.models import MfaChallenge, UserBackupCode, UserMfa

from .base import BaseRepository


class MfaRepository(BaseRepository):
    """All writes that race are single conditional UPDATE statements."""

    def find_by_user_id(self, user_id: str) -> UserMfa | None:
        return self._read(
            "mfa.find_by_user_id",
            lambda: self._db.query(UserMfa)
            .filter(UserMfa.user_id == user_id)
            .populate_existing()
            .first(),
        )

    def save(self, mfa: UserMfa) -> UserMfa:
        self._db.add(mfa)
        return mfa

    def record_success(self, mfa_id: str, now: datetime) -> None:
        self._db.execute(
            update(UserMfa)
            .where(UserMfa.id == mfa_id)
            .values(last_used_at=now, failed_attempts=0, locked_until=None)
            .execution_options(synchronize_session=False)
        )

    def record_failure(self, mfa_id: str, max_attempts: int, lock_until: datetime) -> bool:
        """Count a failed attempt; lock once the limit is reached. Returns True if now locked."""
        self._db.execute(
            update(UserMfa)
            .where(UserMfa.id == mfa_id)
            .values(failed_attempts=UserMfa.failed_attempts + 1)
            .execution_options(synchronize_session=False)
        )
        locked = self._db.execute(
            update(UserMfa)
            .where(UserMfa.id == mfa_id, UserMfa.failed_attempts >= max_attempts)
            .values(failed_attempts=0, locked_until=lock_until)
            .execution_options(synchronize_session=False)
        )
        return locked.rowcount == 1

    # -- Backup codes ----------------------------------------------------------

    def replace_backup_codes(self, user_id: str, code_hashes: list[str]) -> None:
        """Swap the whole code set inside the caller's transaction."""
        self._db.execute(
            delete(UserBackupCode)
            .where(UserBackupCode.user_id == user_id)
            .execution_options(synchronize_session=False)
        )
        self._db.add_all(
            UserBackupCode(user_id=user_id, code_hash=code_hash) for code_hash in code_hashes
        )

    def redeem_backup_code(self, user_id: str, code_hash: str, now: datetime) -> bool:
        """Mark a code used only if it is still unused. Exactly one caller can win."""
        result = self._db.execute(
            update(UserBackupCode)
            .where(
                UserBackupCode.user_id == user_id,
                UserBackupCode.code_hash == code_hash,
                UserBackupCode.used.is_(False),
            )
            .values(used=True, used_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def count_unused_backup_codes(self, user_id: str) -> int:
        return self._read(
            "mfa.count_unused_backup_codes",
            lambda: self._db.scalar(
                select(func.count())
                .select_from(UserBackupCode)
                .where(UserBackupCode.user_id == user_id, UserBackupCode.used.is_(False))
            ),
        )

    # -- Login challenges ------------------------------------------------------

    def create_challenge(self, challenge: MfaChallenge) -> MfaChallenge:
        self._db.add(challenge)
        return challenge

    def find_open_challenge(self, token_hash: str, now: datetime) -> MfaChallenge | None:
        """Unused, unexpired challenge for this token hash."""
        return self._read(
            "mfa.find_open_challenge",
            lambda: self._db.query(MfaChallenge)
            .filter(
                MfaChallenge.token_hash == token_hash,
                MfaChallenge.used_at.is_(None),
                MfaChallenge.expires_at > now,
            )
            .first(),
        )

    def consume_challenge(self, challenge_id: str, now: datetime) -> bool:
        """Mark a challenge used if nobody else has. Returns True for the single winner."""
        result = self._db.execute(
            update(MfaChallenge)
            .where(MfaChallenge.id == challenge_id, MfaChallenge.used_at.is_(None))
            .values(used_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
