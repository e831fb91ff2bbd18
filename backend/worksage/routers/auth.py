"""Authentication router."""

import logging
from datetime import timedelta

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from worksage.config import Settings, get_settings
from worksage.database import get_db
from worksage.dependencies.auth import authorize_ownership, get_current_user
from worksage.dependencies.services import (
    get_mfa_service,
    get_password_policy,
    get_token_service,
)
from worksage.models import Session as UserSession
from worksage.models import User
from worksage.rate_limiter import CREDENTIAL_LIMIT, SECOND_FACTOR_LIMIT, limiter
from worksage.schemas.auth import (
    AccessTokenResponse,
    ChangePasswordRequest,
    LogoutAllResponse,
    MessageResponse,
    MfaChallengeResponse,
    PasswordValidateRequest,
    PasswordValidateResponse,
    SessionInfo,
    SessionListResponse,
    TokenRefresh,
    TokenResponse,
    UserInfo,
    UserLogin,
    UserRegister,
)
from worksage.schemas.mfa import MfaLoginRequest
from worksage.services.auth import (
    AuthService,
    MfaService,
    PasswordContext,
    PasswordPolicy,
    SecurityAuditService,
    SecurityEventType,
    TokenService,
)
from worksage.services.auth.errors import (
    AccountDeactivated,
    EmailNotVerified,
    EmailTaken,
    InvalidCode,
    InvalidCredentials,
    InvalidSession,
    MfaLocked,
    MustChangePassword,
    PasswordExpired,
    PasswordPolicyViolation,
    PasswordReused,
    SessionSecurityViolation,
)
from worksage.services.repositories import SessionRepository, UserRepository
from worksage.timestamps import as_utc, utcnow

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["authentication"])


def load_session(db: Session, session_id: str) -> UserSession | None:
    return SessionRepository(db).find_by_id(session_id)


def _token_response(user: User, access_token: str, refresh_token: str) -> dict:
    return {
        "access_token": access_token,
        "refresh_token": refresh_token,
        "token_type": "bearer",
        "user": UserInfo.model_validate(user),
    }


@router.post("/register", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(CREDENTIAL_LIMIT)
def register(
    request: Request,
    data: UserRegister,
    db: Session = Depends(get_db),
    policy: PasswordPolicy = Depends(get_password_policy),
) -> dict:
    """Register a new password account. Email verification is delivered elsewhere."""
    ip_address, user_agent = SecurityAuditService.get_request_info(request)
    users = UserRepository(db)

    if users.find_by_email(data.email):
        raise EmailTaken()

    validation = policy.validate_complexity(
        data.password, PasswordContext(email=data.email, name=data.name)
    )
    if not validation.valid:
        raise PasswordPolicyViolation(validation.violations)

    now = utcnow()
    user = users.save(
        User(
            email=data.email.strip().lower(),
            name=data.name,
            password_hash=AuthService.hash_password(data.password),
            password_history=[],
            password_changed_at=now,
            password_expires_at=policy.password_expiry(now),
            email_verified=False,
        )
    )
    db.flush()

    SecurityAuditService.log_event(
        db, SecurityEventType.USER_REGISTERED, user_id=user.id,
        ip_address=ip_address, user_agent=user_agent
    )
    db.commit()

    logger.info(f"User registered (pending verification): {user.email}")
    return {"message": "Registration successful. Please verify your email before logging in."}


def _check_account_lockout(
    user: User, db: Session, ip_address: str | None, user_agent: str | None
) -> None:
    """Raise the generic credentials error while the account is locked.

    An expired lock is cleared so the user gets a fresh set of attempts.
    """
    if not user.locked_until:
        return
    if as_utc(user.locked_until) <= utcnow():
        UserRepository(db).clear_failed_logins(user.id)
        db.commit()
        return

    SecurityAuditService.log_event(
        db, SecurityEventType.LOGIN_BLOCKED_LOCKOUT, user_id=user.id,
        ip_address=ip_address, user_agent=user_agent,
        details={"locked_until": as_utc(user.locked_until).isoformat()}
    )
    db.commit()
    # Same error as invalid credentials to prevent email enumeration
    raise InvalidCredentials()


def _record_failed_login(
    user: User,
    db: Session,
    settings: Settings,
    ip_address: str | None,
    user_agent: str | None,
) -> None:
    """Record a failed login attempt and lock account if threshold reached."""
    locked = UserRepository(db).record_failed_login(
        user.id,
        settings.max_login_attempts,
        utcnow() + timedelta(minutes=settings.lockout_duration_minutes),
    )
    details = {"reason": "invalid_password"}
    if locked:
        details["account_locked"] = True
    else:
        db.refresh(user)
        details["attempts"] = user.failed_login_attempts
    SecurityAuditService.log_event(
        db, SecurityEventType.LOGIN_FAILED, user_id=user.id,
        ip_address=ip_address, user_agent=user_agent, details=details
    )
    db.commit()


@router.post("/login", response_model=TokenResponse | MfaChallengeResponse)
@limiter.limit(CREDENTIAL_LIMIT)
def login(
    request: Request,
    data: UserLogin,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    tokens: TokenService = Depends(get_token_service),
    mfa_service: MfaService = Depends(get_mfa_service),
) -> dict:
    """Password factor. Returns tokens, or an MFA challenge when MFA is enabled."""
    ip_address, user_agent = SecurityAuditService.get_request_info(request)

    user = UserRepository(db).find_by_email(data.email)
    if not user or not user.password_hash:
        # Dummy verification keeps response timing independent of the email
        AuthService.verify_password(data.password, AuthService.get_dummy_hash())
        SecurityAuditService.log_event(
            db, SecurityEventType.LOGIN_FAILED, ip_address=ip_address,
            user_agent=user_agent, details={"reason": "user_not_found"}
        )
        db.commit()
        raise InvalidCredentials()

    _check_account_lockout(user, db, ip_address, user_agent)

    if not AuthService.verify_password(data.password, user.password_hash):
        _record_failed_login(user, db, settings, ip_address, user_agent)
        raise InvalidCredentials()

    # Password correct - clear any failed login attempts
    UserRepository(db).clear_failed_logins(user.id)
    db.commit()

    if not user.is_active:
        SecurityAuditService.log_event(
            db, SecurityEventType.LOGIN_BLOCKED_DISABLED, user_id=user.id,
            ip_address=ip_address, user_agent=user_agent
        )
        db.commit()
        raise AccountDeactivated()

    if not user.email_verified:
        SecurityAuditService.log_event(
            db, SecurityEventType.LOGIN_BLOCKED_UNVERIFIED, user_id=user.id,
            ip_address=ip_address, user_agent=user_agent
        )
        db.commit()
        raise EmailNotVerified()

    if user.must_change_password:
        raise MustChangePassword()

    if user.password_expires_at and as_utc(user.password_expires_at) <= utcnow():
        SecurityAuditService.log_event(
            db, SecurityEventType.LOGIN_BLOCKED_PASSWORD_EXPIRED, user_id=user.id,
            ip_address=ip_address, user_agent=user_agent
        )
        db.commit()
        raise PasswordExpired()

    if mfa_service.is_enabled(user.id):
        mfa_token = mfa_service.create_challenge(user.id, ip_address, user_agent)
        logger.info(f"MFA required for user: {user.email}")
        return {"mfa_required": True, "mfa_token": mfa_token, "user_id": user.id}

    issued = tokens.create_session(user.id, ip_address, user_agent)

    SecurityAuditService.log_event(
        db, SecurityEventType.LOGIN_SUCCESS, user_id=user.id, session_id=issued.session_id,
        ip_address=ip_address, user_agent=user_agent
    )
    db.commit()

    logger.info(f"User logged in: {user.email}")
    return _token_response(user, issued.access_token, issued.refresh_token)


@router.post("/mfa-login", response_model=TokenResponse)
@limiter.limit(SECOND_FACTOR_LIMIT)
def mfa_login(
    request: Request,
    data: MfaLoginRequest,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    tokens: TokenService = Depends(get_token_service),
    mfa_service: MfaService = Depends(get_mfa_service),
) -> dict:
    """Second factor for a login that passed the password check."""
    ip_address, user_agent = SecurityAuditService.get_request_info(request)

    challenge = mfa_service.find_challenge(data.mfa_token)
    if challenge is None:
        raise InvalidSession("Invalid or expired MFA challenge.")
    user_id = challenge.user_id

    if settings.strict_session_binding and (
        challenge.ip_address != ip_address or challenge.user_agent != user_agent
    ):
        SecurityAuditService.log_event(
            db, SecurityEventType.SESSION_SECURITY_VIOLATION, user_id=user_id,
            ip_address=ip_address, user_agent=user_agent, details={"stage": "mfa_login"}
        )
        db.commit()
        raise SessionSecurityViolation()

    if mfa_service.is_locked(user_id):
        raise MfaLocked()

    method = "backup_code" if data.is_backup_code else "totp"
    # A correct code consumes the challenge in the same transaction. A request
    # that loses the challenge gets InvalidSession and its backup code stays unused
    if not mfa_service.verify(
        user_id, data.code, data.is_backup_code, challenge_id=challenge.id
    ):
        locked = mfa_service.is_locked(user_id)
        SecurityAuditService.log_event(
            db, SecurityEventType.MFA_LOCKED if locked else SecurityEventType.MFA_FAILED,
            user_id=user_id, ip_address=ip_address, user_agent=user_agent,
            details={"method": method}
        )
        db.commit()
        if locked:
            raise MfaLocked()
        raise InvalidCode()

    user = UserRepository(db).find_by_id(user_id)
    if user is None or not user.is_active:
        raise AccountDeactivated()

    issued = tokens.create_session(user.id, ip_address, user_agent)

    event_type = (
        SecurityEventType.BACKUP_CODE_USED if data.is_backup_code else SecurityEventType.MFA_VERIFIED
    )
    SecurityAuditService.log_event(
        db, event_type, user_id=user.id, session_id=issued.session_id,
        ip_address=ip_address, user_agent=user_agent, details={"method": method}
    )
    SecurityAuditService.log_event(
        db, SecurityEventType.LOGIN_SUCCESS, user_id=user.id, session_id=issued.session_id,
        ip_address=ip_address, user_agent=user_agent
    )
    db.commit()

    logger.info(f"MFA verified for user: {user.email} using {method}")
    return _token_response(user, issued.access_token, issued.refresh_token)


@router.post("/refresh", response_model=AccessTokenResponse)
def refresh_tokens(
    request: Request,
    data: TokenRefresh,
    db: Session = Depends(get_db),
    tokens: TokenService = Depends(get_token_service),
) -> dict:
    """Mint a new access token from a refresh token."""
    ip_address, user_agent = SecurityAuditService.get_request_info(request)

    try:
        result = tokens.refresh_access_token(data.refresh_token, ip_address, user_agent)
    except SessionSecurityViolation:
        session = tokens.find_session(data.refresh_token)
        SecurityAuditService.log_event(
            db, SecurityEventType.SESSION_SECURITY_VIOLATION,
            user_id=session.user_id if session else None,
            session_id=session.id if session else None,
            ip_address=ip_address, user_agent=user_agent
        )
        db.commit()
        raise

    SecurityAuditService.log_event(
        db, SecurityEventType.SESSION_REFRESHED, user_id=result.user.id,
        ip_address=ip_address, user_agent=user_agent
    )
    db.commit()

    return {
        "access_token": result.access_token,
        "token_type": "bearer",
        "user": UserInfo.model_validate(result.user),
    }


@router.post("/logout", response_model=MessageResponse)
def logout(
    request: Request,
    data: TokenRefresh,
    db: Session = Depends(get_db),
    tokens: TokenService = Depends(get_token_service),
) -> dict:
    """Logout and revoke refresh token. Always succeeds."""
    ip_address, user_agent = SecurityAuditService.get_request_info(request)

    session = tokens.find_session(data.refresh_token)
    if tokens.revoke_session(data.refresh_token) and session is not None:
        SecurityAuditService.log_event(
            db, SecurityEventType.LOGOUT, user_id=session.user_id, session_id=session.id,
            ip_address=ip_address, user_agent=user_agent
        )
        db.commit()

    return {"message": "Successfully logged out"}


@router.post("/logout-all", response_model=LogoutAllResponse)
def logout_all(
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    tokens: TokenService = Depends(get_token_service),
) -> dict:
    """Revoke every session of the current user, this one included."""
    ip_address, user_agent = SecurityAuditService.get_request_info(request)

    revoked = tokens.revoke_all_sessions(current_user.id)

    SecurityAuditService.log_event(
        db, SecurityEventType.LOGOUT_ALL, user_id=current_user.id,
        ip_address=ip_address, user_agent=user_agent, details={"sessions_revoked": revoked}
    )
    db.commit()

    return {"message": "Logged out from all devices", "sessions_revoked": revoked}


@router.get("/sessions", response_model=SessionListResponse)
def list_sessions(
    request: Request,
    current_user: User = Depends(get_current_user),
    tokens: TokenService = Depends(get_token_service),
) -> dict:
    """List the current user's active sessions."""
    current_sid = getattr(request.state, "session_id", None)
    sessions = [
        SessionInfo.model_validate(s).model_copy(update={"current": s.id == current_sid})
        for s in tokens.list_active_sessions(current_user.id)
    ]
    return {"sessions": sessions}


@router.delete("/sessions/{session_id}", response_model=MessageResponse)
def revoke_session(
    request: Request,
    session: UserSession = Depends(authorize_ownership(load_session, "session_id")),
    db: Session = Depends(get_db),
    tokens: TokenService = Depends(get_token_service),
) -> dict:
    """Revoke one session (owner or admin)."""
    ip_address, user_agent = SecurityAuditService.get_request_info(request)

    if tokens.revoke_session_by_id(session.id):
        SecurityAuditService.log_event(
            db, SecurityEventType.LOGOUT, user_id=session.user_id, session_id=session.id,
            ip_address=ip_address, user_agent=user_agent
        )
        db.commit()

    return {"message": "Session revoked"}


@router.put("/change-password", response_model=MessageResponse)
def change_password(
    request: Request,
    data: ChangePasswordRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    policy: PasswordPolicy = Depends(get_password_policy),
    tokens: TokenService = Depends(get_token_service),
) -> dict:
    """Change password while logged in. All sessions are revoked afterwards."""
    ip_address, user_agent = SecurityAuditService.get_request_info(request)

    if not AuthService.verify_password(data.current_password, current_user.password_hash):
        raise InvalidCredentials("Current password is incorrect.")

    validation = policy.validate_complexity(
        data.new_password, PasswordContext(email=current_user.email, name=current_user.name)
    )
    if not validation.valid:
        raise PasswordPolicyViolation(validation.violations)

    if not policy.check_reuse(current_user.id, data.new_password):
        SecurityAuditService.log_event(
            db, SecurityEventType.PASSWORD_REUSE_REJECTED, user_id=current_user.id,
            ip_address=ip_address, user_agent=user_agent
        )
        db.commit()
        raise PasswordReused()

    policy.update_password_with_history(current_user.id, data.new_password)
    tokens.revoke_all_sessions(current_user.id)

    SecurityAuditService.log_event(
        db, SecurityEventType.PASSWORD_CHANGED, user_id=current_user.id,
        ip_address=ip_address, user_agent=user_agent
    )
    db.commit()

    logger.info(f"Password changed for user: {current_user.email}")
    return {"message": "Password changed successfully. Please log in again."}


@router.post("/password/validate", response_model=PasswordValidateResponse)
def validate_password(
    data: PasswordValidateRequest,
    policy: PasswordPolicy = Depends(get_password_policy),
) -> dict:
    """Check a candidate password against the complexity rules without storing anything."""
    validation = policy.validate_complexity(
        data.password, PasswordContext(email=data.email, name=data.name)
    )
    return {
        "valid": validation.valid,
        "errors": validation.violations,
        "strength": validation.strength,
        "strength_score": validation.strength_score,
    }


@router.get("/me", response_model=UserInfo)
def get_me(current_user: User = Depends(get_current_user)) -> User:
    """Get the current authenticated user's information."""
    return current_user
