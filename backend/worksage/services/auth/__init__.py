"""Authentication and authorization services.

Handles tokens and sessions, MFA, password policy, and security audit logging.
"""

from .auth_service import AuthService
from .mfa_service import MfaService, MfaSetup, MfaStatus
from .password_policy import (
    PasswordContext,
    PasswordPolicy,
    PasswordPolicyConfig,
    PasswordValidation,
)
from .secret_cipher import SecretCipher, SecretDecryptionError, SecretEnvelope
from .security_audit_service import SecurityAuditService, SecurityEventType
from .token_service import IssuedSession, RefreshResult, TokenService

__all__ = [
    "AuthService",
    "IssuedSession",
    "MfaService",
    "MfaSetup",
    "MfaStatus",
    "PasswordContext",
    "PasswordPolicy",
    "PasswordPolicyConfig",
    "PasswordValidation",
    "RefreshResult",
    "SecretCipher",
    "SecretDecryptionError",
    "SecretEnvelope",
    "SecurityAuditService",
    "SecurityEventType",
    "TokenService",
]
