"""Per-client request limits for the credential endpoints."""

from slowapi import Limiter
from slowapi.util import get_remote_address

# Password factor, registration and MFA management share the tighter budget
CREDENTIAL_LIMIT = "5/minute"
# Second-factor attempts; MFA lockout is the per-account backstop
SECOND_FACTOR_LIMIT = "10/minute"

limiter = Limiter(key_func=get_remote_address)
