"""MFA router for TOTP enrollment, backup codes and status."""

import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from worksage.database import get_db
from worksage.dependencies.auth import get_current_user
from worksage.dependencies.services import get_mfa_service
from worksage.models import User
from worksage.rate_limiter import CREDENTIAL_LIMIT, SECOND_FACTOR_LIMIT, limiter
from worksage.schemas.auth import MessageResponse
from worksage.schemas.mfa import (
    BackupCodesResponse,
    EncryptedSecret,
    MfaEnabledResponse,
    MfaStatusResponse,
    PasswordConfirmRequest,
    TotpConfirmRequest,
    TotpSetupResponse,
)
from worksage.services.auth import MfaService, SecurityAuditService, SecurityEventType

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth/mfa", tags=["mfa"])


@router.get("/status", response_model=MfaStatusResponse)
def get_mfa_status(
    current_user: User = Depends(get_current_user),
    mfa_service: MfaService = Depends(get_mfa_service),
) -> dict:
    """MFA state and remaining backup codes for the current user."""
    status = mfa_service.status(current_user.id)
    return {
        "enabled": status.enabled,
        "setup_at": status.setup_at,
        "last_used_at": status.last_used_at,
        "backup_codes_remaining": status.backup_codes_remaining,
    }


@router.post("/setup", response_model=TotpSetupResponse)
def setup_totp(
    current_user: User = Depends(get_current_user),
    mfa_service: MfaService = Depends(get_mfa_service),
) -> dict:
    """Initiate TOTP setup. Returns the provisioning data; nothing is saved yet."""
    setup = mfa_service.begin_setup(current_user.id, current_user.email)
    return {
        "provisioning_uri": setup.provisioning_uri,
        "qr_code_base64": setup.qr_code_base64,
        "manual_entry_key": setup.manual_entry_key,
        "encrypted_secret": EncryptedSecret.from_envelope(setup.envelope),
    }


@router.post("/verify-setup", response_model=MfaEnabledResponse)
@limiter.limit(SECOND_FACTOR_LIMIT)
def confirm_totp(
    request: Request,
    data: TotpConfirmRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    mfa_service: MfaService = Depends(get_mfa_service),
) -> dict:
    """Confirm TOTP setup with a valid code. Enables MFA and returns backup codes."""
    ip_address, user_agent = SecurityAuditService.get_request_info(request)

    backup_codes = mfa_service.complete_setup(
        current_user.id, data.code, data.encrypted_secret.to_envelope()
    )

    SecurityAuditService.log_event(
        db, SecurityEventType.MFA_ENABLED, user_id=current_user.id,
        ip_address=ip_address, user_agent=user_agent, details={"method": "totp"}
    )
    db.commit()
    logger.info(f"TOTP MFA enabled for user: {current_user.email}")

    return {
        "message": "MFA enabled successfully. Store these backup codes somewhere safe.",
        "backup_codes": backup_codes,
    }


@router.post("/disable", response_model=MessageResponse)
@limiter.limit(CREDENTIAL_LIMIT)
def disable_mfa(
    request: Request,
    data: PasswordConfirmRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    mfa_service: MfaService = Depends(get_mfa_service),
) -> dict:
    """Disable MFA. Requires the account password."""
    ip_address, user_agent = SecurityAuditService.get_request_info(request)

    mfa_service.disable(current_user.id, data.password)

    SecurityAuditService.log_event(
        db, SecurityEventType.MFA_DISABLED, user_id=current_user.id,
        ip_address=ip_address, user_agent=user_agent
    )
    db.commit()

    logger.info(f"MFA disabled for user: {current_user.email}")
    return {"message": "MFA has been disabled"}


@router.post("/regenerate-backup-codes", response_model=BackupCodesResponse)
@limiter.limit(CREDENTIAL_LIMIT)
def regenerate_backup_codes(
    request: Request,
    data: PasswordConfirmRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    mfa_service: MfaService = Depends(get_mfa_service),
) -> dict:
    """Replace all backup codes. Requires the account password."""
    ip_address, user_agent = SecurityAuditService.get_request_info(request)

    backup_codes = mfa_service.regenerate_backup_codes(current_user.id, data.password)

    SecurityAuditService.log_event(
        db, SecurityEventType.BACKUP_CODES_REGENERATED, user_id=current_user.id,
        ip_address=ip_address, user_agent=user_agent
    )
    db.commit()

    logger.info(f"Backup codes regenerated for user: {current_user.email}")
    return {"backup_codes": backup_codes}
