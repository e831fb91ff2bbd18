"""Identity and session error taxonomy.

Every failure raised by the trust core is an ``AuthError`` carrying a stable,
machine-readable ``code``. The FastAPI exception handler in ``worksage.main``
is the only place these become response bodies::

    {"success": false, "code": "TOKEN_EXPIRED", "message": "..."}

Clients branch on ``code`` (expired => silent refresh, deactivated => hard
logout), never on ``message``.
"""


class AuthError(Exception):
    """Base class for trust-core failures mapped to HTTP responses."""

    status_code: int = 400
    code: str = "AUTH_ERROR"
    message: str = "Authentication error."

    def __init__(self, message: str | None = None, *, detail: dict | None = None) -> None:
        if message is not None:
            self.message = message
        self.detail = detail or {}
        super().__init__(self.message)

    def to_body(self) -> dict:
        return {"success": False, "code": self.code, "message": self.message, **self.detail}


# -- Authentication failures (401) --------------------------------------------


class AuthenticationFailure(AuthError):
    status_code = 401
    code = "AUTH_FAILED"
    message = "Authentication failed."


class NoToken(AuthenticationFailure):
    code = "NO_TOKEN"
    message = "Access denied. No token provided."


class TokenExpired(AuthenticationFailure):
    code = "TOKEN_EXPIRED"
    message = "Token expired. Please refresh your session."


class InvalidToken(AuthenticationFailure):
    code = "INVALID_TOKEN"
    message = "Invalid token."


class UserNotFound(AuthenticationFailure):
    code = "USER_NOT_FOUND"
    message = "Invalid token. User not found."


class AccountDeactivated(AuthenticationFailure):
    code = "ACCOUNT_DEACTIVATED"
    message = "Account is deactivated."


class EmailNotVerified(AuthenticationFailure):
    code = "EMAIL_NOT_VERIFIED"
    message = "Email not verified."


class InvalidSession(AuthenticationFailure):
    code = "INVALID_SESSION"
    message = "Invalid or expired refresh token."


class InvalidCredentials(AuthenticationFailure):
    code = "INVALID_CREDENTIALS"
    message = "Invalid email or password."


class PasswordExpired(AuthenticationFailure):
    code = "PASSWORD_EXPIRED"
    message = "Your password has expired. Please reset your password."


class MustChangePassword(AuthenticationFailure):
    code = "MUST_CHANGE_PASSWORD"
    message = "You must change your password before continuing."


# -- Security violations -------------------------------------------------------


class SecurityViolation(AuthError):
    status_code = 401
    code = "SECURITY_VIOLATION"
    message = "Security violation detected."


class SessionSecurityViolation(SecurityViolation):
    code = "SESSION_SECURITY_VIOLATION"
    message = "Session security violation detected."


# -- Authorization failures (403) ---------------------------------------------


class AuthorizationFailure(AuthError):
    status_code = 403
    code = "FORBIDDEN"
    message = "Access denied."


class InsufficientPermissions(AuthorizationFailure):
    code = "INSUFFICIENT_PERMISSIONS"

    def __init__(self, required_roles: list[str], user_role: str) -> None:
        super().__init__(
            f"Access denied. Required roles: {', '.join(required_roles)}. Your role: {user_role}",
            detail={"required_roles": required_roles, "user_role": user_role},
        )


class NotOwner(AuthorizationFailure):
    code = "NOT_OWNER"
    message = "Access denied. You can only access your own resources."


# -- Validation failures (400) -------------------------------------------------


class ValidationFailure(AuthError):
    status_code = 400
    code = "VALIDATION_FAILED"
    message = "Validation failed."


class InvalidCode(ValidationFailure):
    code = "INVALID_CODE"
    message = "Invalid verification code."


class PasswordPolicyViolation(ValidationFailure):
    code = "PASSWORD_POLICY_VIOLATION"
    message = "Password does not meet security requirements."

    def __init__(self, violations: list[str]) -> None:
        super().__init__(detail={"errors": violations})


class PasswordReused(ValidationFailure):
    code = "PASSWORD_REUSED"
    message = "Cannot reuse your current password or any of your recent passwords."


class MfaAlreadyEnabled(ValidationFailure):
    code = "MFA_ALREADY_ENABLED"
    message = "MFA is already enabled for this account."


class MfaNotEnabled(ValidationFailure):
    code = "MFA_NOT_ENABLED"
    message = "MFA is not enabled for this account."


class EmailTaken(ValidationFailure):
    code = "EMAIL_TAKEN"
    message = "Email already registered."


# -- Throttling, lookups, store ------------------------------------------------


class MfaLocked(AuthError):
    status_code = 429
    code = "MFA_LOCKED"
    message = "Too many failed verification attempts. Try again later."


class NotFound(AuthError):
    status_code = 404
    code = "NOT_FOUND"
    message = "Not found."


class ResourceNotFound(NotFound):
    code = "RESOURCE_NOT_FOUND"
    message = "Resource not found."


class TransientStoreFailure(AuthError):
    status_code = 503
    code = "STORE_UNAVAILABLE"
    message = "Service temporarily unavailable. Please retry."
