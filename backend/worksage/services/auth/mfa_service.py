"""MFA service for TOTP, backup codes and login challenges."""

import base64
import logging
import secrets
from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import UTC, datetime, timedelta
from io import BytesIO

import pyotp
import qrcode
from sqlalchemy.orm import Session

from worksage.config import Settings
from worksage.constants import BACKUP_CODE_COUNT
from worksage.models import MfaChallenge, UserMfa
from worksage.services.repositories import MfaRepository, UserRepository
from worksage.timestamps import as_utc, utcnow

from .auth_service import AuthService
from .errors import (
    InvalidCode,
    InvalidCredentials,
    InvalidSession,
    MfaAlreadyEnabled,
    MfaNotEnabled,
    UserNotFound,
)
from .secret_cipher import SecretCipher, SecretDecryptionError, SecretEnvelope

logger = logging.getLogger(__name__)

SETUP_DATA_REJECTED = "Invalid or expired setup data."
CHALLENGE_REJECTED = "Invalid or expired MFA challenge."


@dataclass(frozen=True)
class MfaSetup:
    """Material handed to the client while enrollment is pending.

    Nothing is persisted until the client proves it can produce a code.
    """

    provisioning_uri: str
    envelope: SecretEnvelope
    qr_code_base64: str
    manual_entry_key: str


@dataclass(frozen=True)
class MfaStatus:
    enabled: bool
    setup_at: datetime | None
    last_used_at: datetime | None
    backup_codes_remaining: int


def normalize_backup_code(code: str) -> str:
    """Backup codes are accepted in any case, with or without separators."""
    return code.strip().upper().replace("-", "").replace(" ", "")


def _epoch_millis(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


def _setup_context(user_id: str, issued_at: int) -> bytes:
    """Associated data binding a setup envelope to one user and issue time."""
    return f"worksage-mfa-setup:{user_id}:{issued_at}".encode("utf-8")


class MfaService:
    """Service for MFA operations."""

    def __init__(
        self,
        db: Session,
        cipher: SecretCipher | None,
        settings: Settings,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._db = db
        self._cipher = cipher
        self._settings = settings
        self._clock = clock
        self._repo = MfaRepository(db)
        self._users = UserRepository(db)

    @staticmethod
    def generate_totp_secret() -> str:
        """Generate a new TOTP secret (base32 encoded, 32 characters)."""
        return pyotp.random_base32()

    @staticmethod
    def get_totp_uri(secret: str, email: str, issuer: str) -> str:
        """Get otpauth:// URI for QR code scanning."""
        totp = pyotp.TOTP(secret)
        return totp.provisioning_uri(name=email, issuer_name=issuer)

    @staticmethod
    def generate_qr_code_base64(uri: str) -> str:
        """Generate QR code as base64 PNG for embedding in responses."""
        qr = qrcode.make(uri)
        buffer = BytesIO()
        qr.save(buffer, format="PNG")
        return base64.b64encode(buffer.getvalue()).decode()

    @staticmethod
    def verify_totp(
        secret: str, code: str, for_time: datetime | None = None, valid_window: int = 1
    ) -> bool:
        """Verify TOTP code, allowing `valid_window` 30-second steps of drift each side."""
        code = code.strip()
        if not code.isdigit():
            return False
        totp = pyotp.TOTP(secret)
        if for_time is None:
            return totp.verify(code, valid_window=valid_window)
        return totp.verify(code, for_time=for_time, valid_window=valid_window)

    @staticmethod
    def generate_backup_codes(count: int = BACKUP_CODE_COUNT) -> list[str]:
        """Generate backup codes in XXXX-XXXX-XXXX format.

        Each code is unique and cryptographically random.
        """
        codes: set[str] = set()
        while len(codes) < count:
            # 3 groups of 4 hex characters (uppercase)
            parts = [secrets.token_hex(2).upper() for _ in range(3)]
            codes.add("-".join(parts))
        return list(codes)

    def _require_cipher(self) -> SecretCipher:
        if self._cipher is None:
            raise ValueError("MFA encryption key not configured")
        return self._cipher

    def _hash_backup_code(self, code: str) -> str:
        return AuthService.hash_token(normalize_backup_code(code))

    def _stored_envelope(self, mfa: UserMfa) -> SecretEnvelope | None:
        if not (mfa.secret_ciphertext and mfa.secret_iv and mfa.secret_tag):
            return None
        return SecretEnvelope(
            ciphertext=mfa.secret_ciphertext, iv=mfa.secret_iv, tag=mfa.secret_tag
        )

    def _require_password(self, user_id: str, password: str) -> None:
        user = self._users.find_by_id(user_id)
        if user is None:
            raise UserNotFound()
        if not AuthService.verify_password(password, user.password_hash):
            raise InvalidCredentials("Invalid password.")

    def _require_enabled(self, user_id: str) -> UserMfa:
        mfa = self._repo.find_by_user_id(user_id)
        if mfa is None or not mfa.enabled:
            raise MfaNotEnabled()
        return mfa

    # -- Enrollment ------------------------------------------------------------

    def begin_setup(self, user_id: str, email: str) -> MfaSetup:
        """Generate a secret and provisioning material for a pending enrollment.

        The envelope is bound to ``user_id`` and its issue time, so it cannot be
        replayed for another account or after it expires.
        """
        mfa = self._repo.find_by_user_id(user_id)
        if mfa is not None and mfa.enabled:
            raise MfaAlreadyEnabled()

        secret = self.generate_totp_secret()
        uri = self.get_totp_uri(secret, email, self._settings.mfa_issuer)
        issued_at = _epoch_millis(self._clock())
        envelope = self._require_cipher().encrypt(secret, _setup_context(user_id, issued_at))
        return MfaSetup(
            provisioning_uri=uri,
            envelope=replace(envelope, issued_at=issued_at),
            qr_code_base64=self.generate_qr_code_base64(uri),
            manual_entry_key=secret,
        )

    def _open_setup_envelope(
        self, user_id: str, envelope: SecretEnvelope, mfa: UserMfa | None
    ) -> str:
        if envelope.issued_at is None:
            raise InvalidCode(SETUP_DATA_REJECTED)
        try:
            secret = self._require_cipher().decrypt(
                envelope, _setup_context(user_id, envelope.issued_at)
            )
        except SecretDecryptionError:
            raise InvalidCode(SETUP_DATA_REJECTED) from None

        # issued_at is authenticated from here on
        issued = datetime.fromtimestamp(envelope.issued_at / 1000, tz=UTC)
        if self._clock() - issued > timedelta(minutes=self._settings.mfa_setup_expire_minutes):
            raise InvalidCode(SETUP_DATA_REJECTED)
        if mfa is not None and mfa.disabled_at is not None and issued <= as_utc(mfa.disabled_at):
            logger.warning(f"Setup envelope from before the last MFA disable for user {user_id}")
            raise InvalidCode(SETUP_DATA_REJECTED)
        return secret

    def complete_setup(self, user_id: str, code: str, envelope: SecretEnvelope) -> list[str]:
        """Enable MFA once the code matches the pending secret. Returns plaintext backup codes."""
        mfa = self._repo.find_by_user_id(user_id)
        if mfa is not None and mfa.enabled:
            raise MfaAlreadyEnabled()

        secret = self._open_setup_envelope(user_id, envelope, mfa)

        if not self.verify_totp(
            secret, code, for_time=self._clock(), valid_window=self._settings.mfa_valid_window
        ):
            raise InvalidCode()

        # Re-encrypt so the stored IV is never one the client has seen
        stored = self._require_cipher().encrypt(secret)
        if mfa is None:
            mfa = self._repo.save(UserMfa(user_id=user_id))
        mfa.secret_ciphertext = stored.ciphertext
        mfa.secret_iv = stored.iv
        mfa.secret_tag = stored.tag
        mfa.enabled = True
        mfa.setup_at = self._clock()
        mfa.failed_attempts = 0
        mfa.locked_until = None

        codes = self.generate_backup_codes()
        self._repo.replace_backup_codes(user_id, [self._hash_backup_code(c) for c in codes])
        self._db.commit()

        logger.info(f"MFA enabled for user {user_id}")
        return codes

    # -- Verification ----------------------------------------------------------

    def is_locked(self, user_id: str) -> bool:
        mfa = self._repo.find_by_user_id(user_id)
        if mfa is None or mfa.locked_until is None:
            return False
        return as_utc(mfa.locked_until) > self._clock()

    def verify(
        self,
        user_id: str,
        code: str,
        is_backup_code: bool = False,
        challenge_id: str | None = None,
    ) -> bool:
        """Check a TOTP or backup code for a user with MFA enabled.

        Never raises for a bad code, a missing configuration or an unreadable
        secret; all of those are a plain False. Consecutive failures lock the
        factor for ``mfa_lockout_minutes``.

        With ``challenge_id`` a correct code also consumes that login challenge
        in the same transaction. If another request consumed it first, nothing
        is committed (a backup code stays unused) and ``InvalidSession`` is raised.
        A wrong code leaves the challenge open.
        """
        mfa = self._repo.find_by_user_id(user_id)
        if mfa is None or not mfa.enabled:
            return False

        now = self._clock()
        if mfa.locked_until is not None and as_utc(mfa.locked_until) > now:
            logger.warning(f"MFA verification refused for locked user {user_id}")
            return False

        if is_backup_code:
            verified = self._repo.redeem_backup_code(user_id, self._hash_backup_code(code), now)
        else:
            envelope = self._stored_envelope(mfa)
            if envelope is None or self._cipher is None:
                logger.error(f"No usable MFA secret for user {user_id}")
                return False
            try:
                secret = self._cipher.decrypt(envelope)
            except SecretDecryptionError:
                logger.error(f"Stored MFA secret for user {user_id} could not be decrypted")
                return False
            verified = self.verify_totp(
                secret, code, for_time=now, valid_window=self._settings.mfa_valid_window
            )

        if verified:
            if challenge_id is not None and not self._repo.consume_challenge(challenge_id, now):
                self._db.rollback()
                logger.warning(f"MFA challenge {challenge_id} already used; code not spent")
                raise InvalidSession(CHALLENGE_REJECTED)
            self._repo.record_success(mfa.id, now)
            self._db.commit()
            return True

        locked = self._repo.record_failure(
            mfa.id,
            self._settings.mfa_max_failed_attempts,
            now + timedelta(minutes=self._settings.mfa_lockout_minutes),
        )
        self._db.commit()
        if locked:
            logger.warning(f"MFA locked for user {user_id} after repeated failures")
        return False

    # -- Management ------------------------------------------------------------

    def disable(self, user_id: str, current_password: str) -> None:
        """Turn MFA off after re-authentication, wiping the secret and backup codes."""
        mfa = self._require_enabled(user_id)
        self._require_password(user_id, current_password)

        mfa.enabled = False
        mfa.secret_ciphertext = None
        mfa.secret_iv = None
        mfa.secret_tag = None
        mfa.setup_at = None
        mfa.disabled_at = self._clock()
        mfa.failed_attempts = 0
        mfa.locked_until = None
        self._repo.replace_backup_codes(user_id, [])
        self._db.commit()
        logger.info(f"MFA disabled for user {user_id}")

    def regenerate_backup_codes(self, user_id: str, current_password: str) -> list[str]:
        """Replace the whole backup code set after re-authentication."""
        self._require_enabled(user_id)
        self._require_password(user_id, current_password)

        codes = self.generate_backup_codes()
        self._repo.replace_backup_codes(user_id, [self._hash_backup_code(c) for c in codes])
        self._db.commit()
        return codes

    def status(self, user_id: str) -> MfaStatus:
        mfa = self._repo.find_by_user_id(user_id)
        if mfa is None or not mfa.enabled:
            return MfaStatus(
                enabled=False, setup_at=None, last_used_at=None, backup_codes_remaining=0
            )
        return MfaStatus(
            enabled=True,
            setup_at=mfa.setup_at,
            last_used_at=mfa.last_used_at,
            backup_codes_remaining=self._repo.count_unused_backup_codes(user_id),
        )

    def is_enabled(self, user_id: str) -> bool:
        mfa = self._repo.find_by_user_id(user_id)
        return mfa is not None and mfa.enabled

    # -- Login challenges ------------------------------------------------------

    def create_challenge(
        self, user_id: str, ip_address: str | None, user_agent: str | None
    ) -> str:
        """Record a passed password factor and return the opaque challenge token."""
        token = secrets.token_urlsafe(32)
        self._repo.create_challenge(
            MfaChallenge(
                user_id=user_id,
                token_hash=AuthService.hash_token(token),
                ip_address=ip_address,
                user_agent=user_agent,
                expires_at=self._clock()
                + timedelta(minutes=self._settings.mfa_challenge_expire_minutes),
            )
        )
        self._db.commit()
        return token

    def find_challenge(self, token: str) -> MfaChallenge | None:
        return self._repo.find_open_challenge(AuthService.hash_token(token), self._clock())
