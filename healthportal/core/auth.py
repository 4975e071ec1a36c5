"""Authentication and authorization dependencies for the healthcare portal API.

Every protected request goes through ``get_current_user``: the bearer token is
verified and the user is re-read from the credential store, so a deactivated
or deleted account is rejected even while its token is still unexpired.
Role checks come from ``require_roles``, fed with the allow-lists in
``healthportal.domain.access``.

Per request:
    no token                          -> 401
    bad token / user gone / inactive  -> 401
    authenticated, role not allowed   -> 403
"""
from typing import Iterable, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from starlette.concurrency import run_in_threadpool

from healthportal.core.exceptions import (
    AuthenticationRequired,
    AuthError,
    InsufficientPermissions,
    InvalidToken,
    TransientStoreFailure,
)
from healthportal.core.logging import get_logger
from healthportal.core.tokens import TokenService
from healthportal.domain.user import CurrentUser, UserRole
from healthportal.infrastructure.user_store import UserStore
from healthportal.services.auth_service import AuthService

logger = get_logger(__name__)

# auto_error=False so a missing header becomes our 401 envelope, not FastAPI's default
security_optional = HTTPBearer(auto_error=False)


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def get_token_service(request: Request) -> TokenService:
    return request.app.state.token_service


def get_user_store(request: Request) -> UserStore:
    return request.app.state.user_store


def get_bearer_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security_optional)
) -> Optional[str]:
    if credentials is None or not credentials.credentials:
        return None
    return credentials.credentials


def resolve_identity(token: str, tokens: TokenService, store: UserStore) -> CurrentUser:
    """Verify an access token and re-resolve its user.

    Raises:
        InvalidToken: Token invalid, user missing or user inactive
    """
    claims = tokens.verify_access(token)

    user = store.find_by_id(claims.sub)
    if user is None:
        logger.warning("Token for missing user presented", extra={"user_id": claims.sub})
        raise InvalidToken()
    if not user.is_active:
        logger.warning("Token for deactivated user presented", extra={"user_id": claims.sub})
        raise InvalidToken()

    # Current role and email come from the store, not the (possibly stale) claims
    return CurrentUser(id=user.id, email=user.email, role=user.role)


async def get_current_user(
    request: Request,
    token: Optional[str] = Depends(get_bearer_token),
) -> CurrentUser:
    """FastAPI dependency to get current authenticated user.

    Example:
        >>> @router.get("/protected")
        >>> def protected_route(user: CurrentUser = Depends(get_current_user)):
        ...     return {"user": user.email}
    """
    if token is None:
        raise AuthenticationRequired()

    user = await run_in_threadpool(resolve_identity, token, get_token_service(request), get_user_store(request))
    request.state.user = user

    logger.debug(f"User authenticated: {user.id}", extra={"user_id": user.id})
    return user


async def get_optional_user(
    request: Request,
    token: Optional[str] = Depends(get_bearer_token),
) -> Optional[CurrentUser]:
    """FastAPI dependency for optional authentication.

    Returns the user when a valid token for an active account is present and
    None otherwise. Never fails the request: a store or revocation outage
    also degrades to anonymous.
    """
    if token is None:
        return None
    try:
        user = await run_in_threadpool(resolve_identity, token, get_token_service(request), get_user_store(request))
    except TransientStoreFailure:
        logger.warning("Identity lookup unavailable on optional-auth route, continuing unauthenticated")
        return None
    except AuthError:
        logger.debug("Invalid token on optional-auth route, continuing unauthenticated")
        return None
    request.state.user = user
    return user


def require_roles(allowed_roles: Iterable[UserRole]):
    """Dependency factory for role-based access control.

    Args:
        allowed_roles: Roles permitted to call the endpoint

    Example:
        >>> @router.get("/admin/users")
        >>> def list_users(user: CurrentUser = Depends(require_roles(allowed_roles("admin")))):
        ...     ...
    """
    allowed = frozenset(UserRole(role) for role in allowed_roles)

    async def role_checker(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if user.role not in allowed:
            logger.warning(
                f"Insufficient permissions for {user.id}",
                extra={"user_id": user.id, "user_role": user.role.value,
                       "required_roles": sorted(role.value for role in allowed)}
            )
            raise InsufficientPermissions()
        return user

    return role_checker
