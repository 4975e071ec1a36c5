"""Role allow-lists for every guarded area of the portal.

This table is the only place role-to-area access is declared. Server endpoints
build their ``require_roles`` checks from it, ``GET /auth/routes`` publishes it,
and the client-side router mirror is constructed from that published copy.
"""
from typing import Any, Dict, FrozenSet, Optional

from healthportal.domain.user import UserRole


AREA_ROLES: Dict[str, FrozenSet[UserRole]] = {
    "patient": frozenset({UserRole.PATIENT}),
    "provider": frozenset({UserRole.DOCTOR, UserRole.NURSE}),
    "admin": frozenset({UserRole.ADMIN}),
}

PUBLIC_PATHS: FrozenSet[str] = frozenset({"/login", "/register", "/unauthorized"})

LOGIN_PATH = "/login"
UNAUTHORIZED_PATH = "/unauthorized"

HOME_PATHS: Dict[UserRole, str] = {
    UserRole.PATIENT: "/patient/dashboard",
    UserRole.DOCTOR: "/provider/dashboard",
    UserRole.NURSE: "/provider/dashboard",
    UserRole.ADMIN: "/admin/dashboard",
}


def allowed_roles(area: str) -> FrozenSet[UserRole]:
    """Roles permitted in ``area``. Unknown areas permit nobody."""
    return AREA_ROLES.get(area, frozenset())


def area_for_path(path: str) -> Optional[str]:
    """Return the guarded area a client path belongs to, if any.

    >>> area_for_path("/provider/patients")
    'provider'
    """
    segment = path.strip("/").split("/", 1)[0]
    return segment if segment in AREA_ROLES else None


def is_role_allowed(role: UserRole, area: str) -> bool:
    return role in allowed_roles(area)


def route_table() -> Dict[str, Any]:
    """JSON-ready copy of the allow-lists for the client mirror."""
    return {
        "areas": {
            area: sorted(role.value for role in roles)
            for area, roles in AREA_ROLES.items()
        },
        "publicPaths": sorted(PUBLIC_PATHS),
        "homePaths": {role.value: path for role, path in HOME_PATHS.items()},
        "loginPath": LOGIN_PATH,
        "unauthorizedPath": UNAUTHORIZED_PATH,
    }
