"""Service for logging security events."""

import logging

from sqlalchemy.orm import Session

from worksage.models import SecurityAuditLog

logger = logging.getLogger(__name__)


class SecurityEventType:
    """Constants for security event types."""

    LOGIN_SUCCESS = "login_success"
    LOGIN_FAILED = "login_failed"
    LOGIN_BLOCKED_UNVERIFIED = "login_blocked_unverified"
    LOGIN_BLOCKED_DISABLED = "login_blocked_disabled"
    LOGIN_BLOCKED_LOCKOUT = "login_blocked_lockout"
    LOGIN_BLOCKED_PASSWORD_EXPIRED = "login_blocked_password_expired"
    LOGOUT = "logout"
    LOGOUT_ALL = "logout_all"
    SESSION_REFRESHED = "session_refreshed"
    SESSION_SECURITY_VIOLATION = "session_security_violation"
    PASSWORD_CHANGED = "password_changed"
    PASSWORD_REUSE_REJECTED = "password_reuse_rejected"
    USER_REGISTERED = "user_registered"
    MFA_ENABLED = "mfa_enabled"
    MFA_DISABLED = "mfa_disabled"
    MFA_VERIFIED = "mfa_verified"
    MFA_FAILED = "mfa_failed"
    MFA_LOCKED = "mfa_locked"
    BACKUP_CODE_USED = "backup_code_used"
    BACKUP_CODES_REGENERATED = "backup_codes_regenerated"


class SecurityAuditService:
    """Service for recording security audit events."""

    @staticmethod
    def log_event(
        db: Session,
        event_type: str,
        user_id: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
        details: dict | None = None,
        session_id: str | None = None,
    ) -> None:
        """Stage a security event. The caller commits."""
        db.add(
            SecurityAuditLog(
                user_id=user_id,
                session_id=session_id,
                event_type=event_type,
                ip_address=ip_address,
                user_agent=user_agent,
                details=details or None,
            )
        )

        # Also log to application logger for monitoring
        logger.info(f"Security event: {event_type} | user_id={user_id} | ip={ip_address}")

    @staticmethod
    def get_request_info(request) -> tuple[str | None, str | None]:
        """Extract IP address and user agent from a FastAPI request.

        The IP is the connection peer. Forwarded headers are applied upstream
        by ``ProxyHeadersMiddleware``, and only for peers in ``forwarded_allow_ips``.
        """
        ip_address = None
        user_agent = None

        if request:
            if request.client:
                ip_address = request.client.host

            user_agent = request.headers.get("User-Agent", "")[:500]

        return ip_address, user_agent
