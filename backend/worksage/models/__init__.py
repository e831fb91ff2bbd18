"""SQLAlchemy ORM models."""

from worksage.models.mfa_challenge import MfaChallenge
from worksage.models.security_audit_log import SecurityAuditLog
from worksage.models.session import Session
from worksage.models.user import User
from worksage.models.user_backup_code import UserBackupCode
from worksage.models.user_mfa import UserMfa

__all__ = [
    "MfaChallenge",
    "SecurityAuditLog",
    "Session",
    "User",
    "UserBackupCode",
    "UserMfa",
]
