"""Account administration, restricted to the admin area allow-list."""
from fastapi import APIRouter, Depends

from healthportal.api.responses import envelope
from healthportal.core.auth import get_auth_service, require_roles
from healthportal.core.exceptions import ValidationFailed
from healthportal.domain.access import allowed_roles
from healthportal.domain.user import CurrentUser
from healthportal.services.auth_service import AuthService

require_admin = require_roles(allowed_roles("admin"))

router = APIRouter(prefix="/admin", tags=["Admin"])


def _public(user):
    return user.model_dump(mode="json", by_alias=True)


@router.get("/users")
def list_users(
    admin: CurrentUser = Depends(require_admin),
    service: AuthService = Depends(get_auth_service),
):
    """List all accounts (no secrets exposed)."""
    users = service.list_users()
    return envelope("Users retrieved", {"users": [_public(u) for u in users]})


@router.get("/users/{user_id}")
def get_user(
    user_id: str,
    admin: CurrentUser = Depends(require_admin),
    service: AuthService = Depends(get_auth_service),
):
    return envelope("User retrieved", {"user": _public(service.get_user(user_id))})


@router.post("/users/{user_id}/deactivate")
def deactivate_user(
    user_id: str,
    admin: CurrentUser = Depends(require_admin),
    service: AuthService = Depends(get_auth_service),
):
    """Soft-deactivate an account. Its outstanding tokens stop working immediately."""
    if user_id == admin.id:
        raise ValidationFailed("Administrators cannot deactivate their own account")
    user = service.set_active(user_id, active=False)
    return envelope("User deactivated", {"user": _public(user)})


@router.post("/users/{user_id}/activate")
def activate_user(
    user_id: str,
    admin: CurrentUser = Depends(require_admin),
    service: AuthService = Depends(get_auth_service),
):
    user = service.set_active(user_id, active=True)
    return envelope("User activated", {"user": _public(user)})
