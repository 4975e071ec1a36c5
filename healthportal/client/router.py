"""Client-side mirror of the role allow-lists.

Decides where a navigation should land given the current session. This is a
convenience for UIs; the server enforces the same table on every request.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional

from healthportal.client.session import SessionContext
from healthportal.domain.access import route_table
from healthportal.domain.user import UserRole


class RouteDecisionKind(str, Enum):
    ALLOW = "allow"
    REDIRECT_LOGIN = "redirect_login"
    REDIRECT_UNAUTHORIZED = "redirect_unauthorized"
    REDIRECT_HOME = "redirect_home"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class RouteDecision:
    kind: RouteDecisionKind
    path: str  # where the client ends up


class RoleGatedRouter:
    """Resolve client paths against the published allow-lists.

    Args:
        session: Shared session context
        table: Output of ``GET /auth/routes`` (or ``route_table()``)
    """

    def __init__(self, session: SessionContext, table: Optional[Dict[str, Any]] = None):
        table = table or route_table()
        self.session = session
        self.areas: Dict[str, FrozenSet[UserRole]] = {
            area: frozenset(UserRole(role) for role in roles)
            for area, roles in table["areas"].items()
        }
        self.public_paths = frozenset(table["publicPaths"])
        self.home_paths = {UserRole(role): path for role, path in table["homePaths"].items()}
        self.login_path = table["loginPath"]
        self.unauthorized_path = table["unauthorizedPath"]

    def _area(self, path: str) -> Optional[str]:
        segment = path.strip("/").split("/", 1)[0]
        return segment if segment in self.areas else None

    def resolve(self, path: str) -> RouteDecision:
        path = "/" + path.strip("/")

        if path in self.public_paths:
            return RouteDecision(RouteDecisionKind.ALLOW, path)

        role = self.session.role if self.session.is_authenticated else None

        if path == "/":
            if role is None:
                return RouteDecision(RouteDecisionKind.REDIRECT_LOGIN, self.login_path)
            return RouteDecision(RouteDecisionKind.REDIRECT_HOME, self.home_paths.get(role, self.unauthorized_path))

        area = self._area(path)
        if area is None:
            return RouteDecision(RouteDecisionKind.NOT_FOUND, path)
        if role is None:
            return RouteDecision(RouteDecisionKind.REDIRECT_LOGIN, self.login_path)
        if role not in self.areas[area]:
            return RouteDecision(RouteDecisionKind.REDIRECT_UNAUTHORIZED, self.unauthorized_path)
        return RouteDecision(RouteDecisionKind.ALLOW, path)
