"""Password complexity, strength scoring, reuse prevention and history."""

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from worksage.config import Settings
from worksage.constants import COMMON_PASSWORDS, PASSWORD_SYMBOLS
from worksage.models import User
from worksage.services.repositories import StoreUnavailableError, UserRepository
from worksage.timestamps import utcnow

from .auth_service import AuthService
from .errors import UserNotFound

logger = logging.getLogger(__name__)

MAX_HISTORY_RETRIES = 3
PERSONAL_INFO_MIN_LENGTH = 3

_REPEATED_CHAR = re.compile(r"(.)\1{2,}")
_SEQUENTIAL = re.compile(r"123|abc|qwe", re.IGNORECASE)
_REPEATED_PATTERN = re.compile(r"(.{1,3})\1+")


@dataclass(frozen=True)
class PasswordPolicyConfig:
    min_length: int = 8
    max_length: int = 128
    require_uppercase: bool = True
    require_lowercase: bool = True
    require_digit: bool = True
    require_symbol: bool = True
    symbols: str = PASSWORD_SYMBOLS
    common_passwords: tuple[str, ...] = COMMON_PASSWORDS
    reject_personal_info: bool = True
    history_depth: int = 3
    max_age_days: int = 90  # 0 disables expiry

    @classmethod
    def from_settings(cls, settings: Settings) -> "PasswordPolicyConfig":
        return cls(
            history_depth=settings.password_history_depth,
            max_age_days=settings.password_max_age_days,
        )


@dataclass(frozen=True)
class PasswordContext:
    """Who the password is for; used to reject passwords built from personal info."""

    email: str | None = None
    name: str | None = None


@dataclass(frozen=True)
class PasswordValidation:
    valid: bool
    violations: list[str] = field(default_factory=list)
    strength_score: int = 0
    strength: str = "weak"


def strength_label(score: int) -> str:
    if score <= 3:
        return "weak"
    if score <= 6:
        return "medium"
    if score <= 8:
        return "strong"
    return "very-strong"


class PasswordPolicy:
    """Enforces the password rules and owns writes to the password history."""

    def __init__(
        self,
        db: Session,
        config: PasswordPolicyConfig | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._db = db
        self._config = config or PasswordPolicyConfig()
        self._clock = clock
        self._users = UserRepository(db)

    @property
    def config(self) -> PasswordPolicyConfig:
        return self._config

    def _has_symbol(self, password: str) -> bool:
        return any(ch in self._config.symbols for ch in password)

    def _personal_fragments(self, context: PasswordContext) -> list[str]:
        fragments = []
        if context.email:
            fragments.append(context.email.split("@", 1)[0])
        if context.name:
            fragments.append(context.name)
            fragments.extend(context.name.split())
        return [f.lower() for f in fragments if len(f) >= PERSONAL_INFO_MIN_LENGTH]

    def validate_complexity(
        self, password: str, context: PasswordContext | None = None
    ) -> PasswordValidation:
        """Evaluate every rule and report all violations at once."""
        cfg = self._config
        violations = []

        if len(password) < cfg.min_length:
            violations.append(f"Password must be at least {cfg.min_length} characters long")
        if len(password) > cfg.max_length:
            violations.append(f"Password must not exceed {cfg.max_length} characters")
        if cfg.require_uppercase and not re.search(r"[A-Z]", password):
            violations.append("Password must contain at least one uppercase letter")
        if cfg.require_lowercase and not re.search(r"[a-z]", password):
            violations.append("Password must contain at least one lowercase letter")
        if cfg.require_digit and not re.search(r"\d", password):
            violations.append("Password must contain at least one number")
        if cfg.require_symbol and not self._has_symbol(password):
            violations.append(
                "Password must contain at least one special character (!@#$%^&*()_+-=[]{}|;:,.<>?)"
            )

        lowered = password.lower()
        if any(common.lower() in lowered for common in cfg.common_passwords):
            violations.append("Password contains common phrases and is not allowed")

        if cfg.reject_personal_info and context is not None:
            if any(fragment in lowered for fragment in self._personal_fragments(context)):
                violations.append("Password must not contain your name or email")

        score = self.calculate_strength(password)
        return PasswordValidation(
            valid=not violations,
            violations=violations,
            strength_score=score,
            strength=strength_label(score),
        )

    def calculate_strength(self, password: str) -> int:
        """Score a password from 0 to 10."""
        score = 0
        if len(password) >= 16:
            score += 3
        elif len(password) >= 12:
            score += 2
        elif len(password) >= 8:
            score += 1

        has_lower = bool(re.search(r"[a-z]", password))
        has_upper = bool(re.search(r"[A-Z]", password))
        has_digit = bool(re.search(r"\d", password))
        has_symbol = self._has_symbol(password)
        score += has_lower + has_upper + has_digit + 2 * has_symbol
        if has_lower and has_upper and has_digit and has_symbol:
            score += 1

        # Penalties
        if _REPEATED_CHAR.search(password):
            score -= 1
        if _SEQUENTIAL.search(password):
            score -= 1
        if _REPEATED_PATTERN.search(password):
            score -= 1

        return max(0, min(10, score))

    def check_reuse(self, user_id: str, candidate: str) -> bool:
        """Return False if the candidate matches the current or a recent password.

        A store failure allows the password (True) and is logged: users are
        never blocked from changing their password because history is unreadable.
        """
        try:
            user = self._users.find_by_id(user_id)
        except (StoreUnavailableError, SQLAlchemyError) as e:
            logger.warning(f"Password reuse check skipped for user {user_id}: {e}")
            return True
        if user is None:
            return True

        if user.password_hash and AuthService.verify_password(candidate, user.password_hash):
            return False

        depth = self._config.history_depth
        recent = (user.password_history or [])[-depth:] if depth else []
        return not any(AuthService.verify_password(candidate, old) for old in recent)

    def password_expiry(self, changed_at: datetime) -> datetime | None:
        if not self._config.max_age_days:
            return None
        return changed_at + timedelta(days=self._config.max_age_days)

    def _apply_new_password(self, user: User, new_password: str) -> None:
        history = list(user.password_history or [])
        if user.password_hash:
            history.append(user.password_hash)
        depth = self._config.history_depth
        user.password_history = history[-depth:] if depth else []

        now = self._clock()
        user.password_hash = AuthService.hash_password(new_password)
        user.password_changed_at = now
        user.password_expires_at = self.password_expiry(now)
        user.must_change_password = False

    def update_password_with_history(self, user_id: str, new_password: str) -> User:
        """Set a new password, pushing the previous hash onto the bounded history.

        The write is guarded by the user's version counter. If another writer
        got there first the user is re-read and the change re-applied, so no
        history entry is lost.
        """
        for attempt in range(1, MAX_HISTORY_RETRIES + 1):
            user = self._users.reload(user_id)
            if user is None:
                raise UserNotFound()

            self._apply_new_password(user, new_password)
            try:
                self._db.commit()
            except StaleDataError:
                self._db.rollback()
                logger.warning(
                    f"Concurrent update on user {user_id} during password change "
                    f"(attempt {attempt}), retrying"
                )
                continue

            logger.info(f"Password updated for user {user_id}")
            return user

        raise StoreUnavailableError("user.update_password_with_history")
