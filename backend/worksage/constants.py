"""Application constants to avoid magic strings."""

from enum import Enum


class Role(str, Enum):
    """Principal roles."""

    ADMIN = "admin"
    PROJECT_MANAGER = "project manager"
    DESIGNER = "designer"
    DEVELOPER = "developer"
    WRITER = "writer"
    FREELANCER = "freelancer"
    UNASSIGNED = "unassigned"


# Roles that pass every ownership check
ADMIN_BYPASS_ROLES = frozenset({Role.ADMIN.value})


class TokenType:
    """JWT `type` claim values."""

    ACCESS = "access"


# Punctuation accepted as the "symbol" character class in passwords
PASSWORD_SYMBOLS = "!@#$%^&*()_+-=[]{};':\"\\|,.<>/?"

COMMON_PASSWORDS = (
    "password",
    "123456",
    "password123",
    "admin",
    "qwerty",
    "letmein",
    "welcome",
    "monkey",
    "1234567890",
    "password1",
    "abc123",
    "123456789",
    "welcome123",
    "admin123",
    "root",
    "toor",
    "pass",
    "test",
    "guest",
    "info",
    "adm",
    "mysql",
    "user",
    "administrator",
)

BACKUP_CODE_COUNT = 10
