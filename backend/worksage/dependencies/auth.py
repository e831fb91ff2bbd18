"""Authentication and authorization dependencies for protected routes.

Usage:
    @router.get("/protected")
    def protected_route(user: User = Depends(get_current_user)):
        return {"user_id": user.id}

    @router.get("/admin", dependencies=[Depends(authorize_roles(Role.ADMIN))])
    def admin_route(): ...

    @router.delete("/things/{thing_id}")
    def delete_thing(thing=Depends(authorize_ownership(load_thing, "thing_id"))): ...
"""

import logging
from collections.abc import Callable, Mapping
from typing import Any

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from worksage.config import Settings, get_settings
from worksage.constants import ADMIN_BYPASS_ROLES
from worksage.database import get_db
from worksage.models import User
from worksage.services.auth import TokenService
from worksage.services.auth.errors import (
    AccountDeactivated,
    EmailNotVerified,
    InsufficientPermissions,
    NoToken,
    NotOwner,
    ResourceNotFound,
    TransientStoreFailure,
    UserNotFound,
)
from worksage.services.repositories import StoreUnavailableError, UserRepository

logger = logging.getLogger(__name__)

# auto_error=False so a missing header surfaces as NO_TOKEN instead of a bare 403
security = HTTPBearer(auto_error=False)

# Attributes checked, in order, for the owner of a resource
OWNER_FIELDS = ("user_id", "created_by", "owner_id", "user")


def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> User:
    """Resolve the bearer access token to an active, verified user.

    The session id from the token is left on ``request.state.session_id``.
    A store failure never authenticates; it surfaces as STORE_UNAVAILABLE.
    """
    if credentials is None or not credentials.credentials:
        raise NoToken()

    claims = TokenService(db, settings).verify_access_token(credentials.credentials)

    try:
        user = UserRepository(db).find_by_id(claims["sub"])
    except StoreUnavailableError as e:
        logger.error(f"Authentication aborted: {e}")
        raise TransientStoreFailure() from e

    if user is None:
        raise UserNotFound()
    if not user.is_active:
        raise AccountDeactivated()
    if not user.email_verified:
        raise EmailNotVerified()

    request.state.session_id = claims.get("sid")
    return user


def authorize_roles(*roles: str) -> Callable[..., User]:
    """Build a dependency that admits only users holding one of ``roles``."""
    allowed = [getattr(role, "value", role) for role in roles]

    def require_role(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role not in allowed:
            logger.info(f"User {current_user.id} with role {current_user.role} denied")
            raise InsufficientPermissions(allowed, current_user.role)
        return current_user

    return require_role


def _owner_of(resource: Any) -> str | None:
    for field in OWNER_FIELDS:
        if isinstance(resource, Mapping):
            value = resource.get(field)
        else:
            value = getattr(resource, field, None)
        if value is None:
            continue
        # Relationship or embedded object: compare by its id
        value = getattr(value, "id", value)
        if isinstance(value, Mapping):
            value = value.get("id")
        return str(value) if value is not None else None
    return None


def authorize_ownership(
    loader: Callable[[Session, str], Any], param: str = "resource_id"
) -> Callable[..., Any]:
    """Build a dependency that loads a resource and admits only its owner.

    ``loader(db, resource_id)`` returns the resource or None. Admins bypass
    the owner check but still get RESOURCE_NOT_FOUND for missing resources.
    The loaded resource is returned to the route.
    """

    def require_owner(
        request: Request,
        current_user: User = Depends(get_current_user),
        db: Session = Depends(get_db),
    ) -> Any:
        resource_id = request.path_params.get(param)
        if resource_id is None:
            raise ResourceNotFound()

        try:
            resource = loader(db, resource_id)
        except StoreUnavailableError as e:
            raise TransientStoreFailure() from e
        if resource is None:
            raise ResourceNotFound()

        if current_user.role in ADMIN_BYPASS_ROLES:
            return resource

        if _owner_of(resource) != str(current_user.id):
            raise NotOwner()
        return resource

    return require_owner
