"""Repository layer - data access abstraction.

Repositories are the credential store the trust core consumes. Services
use them rather than querying SQLAlchemy models directly:
- Repositories: Pure data access (queries, creates, updates)
- Services: Business logic that uses repositories

Dependency direction: Services -> Repositories -> Models
"""

from .exceptions import RepositoryError, StoreUnavailableError
from .mfa_repository import MfaRepository
from .session_repository import SessionRepository
from .user_repository import UserRepository

__all__ = [
    "MfaRepository",
    "RepositoryError",
    "SessionRepository",
    "StoreUnavailableError",
    "UserRepository",
]
