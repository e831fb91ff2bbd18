"""Schemas for MFA endpoints."""

from datetime import datetime

from pydantic import BaseModel, Field

from worksage.services.auth import SecretEnvelope


class EncryptedSecret(BaseModel):
    """Pending TOTP secret, AES-GCM encrypted. The client echoes it back unchanged.

    ``issued_at`` (epoch milliseconds) is authenticated with the ciphertext and
    ties the envelope to the requesting user.
    """

    ciphertext: str
    iv: str
    tag: str
    issued_at: int

    def to_envelope(self) -> SecretEnvelope:
        return SecretEnvelope(
            ciphertext=self.ciphertext, iv=self.iv, tag=self.tag, issued_at=self.issued_at
        )

    @classmethod
    def from_envelope(cls, envelope: SecretEnvelope) -> "EncryptedSecret":
        return cls(
            ciphertext=envelope.ciphertext,
            iv=envelope.iv,
            tag=envelope.tag,
            issued_at=envelope.issued_at,
        )


class TotpSetupResponse(BaseModel):
    """Response for TOTP setup initiation."""

    provisioning_uri: str
    qr_code_base64: str
    manual_entry_key: str
    encrypted_secret: EncryptedSecret


class TotpConfirmRequest(BaseModel):
    """Request to confirm TOTP setup."""

    code: str = Field(min_length=6, max_length=6)
    encrypted_secret: EncryptedSecret


class MfaEnabledResponse(BaseModel):
    """Response when MFA is enabled, includes backup codes."""

    message: str
    backup_codes: list[str]


class PasswordConfirmRequest(BaseModel):
    """Re-authentication for disabling MFA or regenerating backup codes."""

    password: str


class BackupCodesResponse(BaseModel):
    """Response with new backup codes."""

    backup_codes: list[str]


class MfaLoginRequest(BaseModel):
    """Second factor for a pending login."""

    mfa_token: str
    code: str = Field(min_length=1, max_length=32)
    is_backup_code: bool = False


class MfaStatusResponse(BaseModel):
    """Response for GET /auth/mfa/status."""

    enabled: bool
    setup_at: datetime | None = None
    last_used_at: datetime | None = None
    backup_codes_remaining: int
