"""Service providers for route dependencies.

Every service is built per request from the request's database session and
the injected settings, so tests override ``get_db``/``get_settings`` only.
"""

from fastapi import Depends
from sqlalchemy.orm import Session

from worksage.config import Settings, get_settings
from worksage.database import get_db
from worksage.services.auth import (
    MfaService,
    PasswordPolicy,
    PasswordPolicyConfig,
    SecretCipher,
    TokenService,
)


def get_token_service(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> TokenService:
    return TokenService(db, settings)


def get_secret_cipher(settings: Settings = Depends(get_settings)) -> SecretCipher | None:
    """The cipher, or None when no key is configured (MFA operations then fail)."""
    if not settings.mfa_encryption_key:
        return None
    return SecretCipher(settings.mfa_encryption_key)


def get_mfa_service(
    db: Session = Depends(get_db),
    cipher: SecretCipher | None = Depends(get_secret_cipher),
    settings: Settings = Depends(get_settings),
) -> MfaService:
    return MfaService(db, cipher, settings)


def get_password_policy(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> PasswordPolicy:
    return PasswordPolicy(db, PasswordPolicyConfig.from_settings(settings))
