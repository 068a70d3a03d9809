from dataclasses import dataclass, field
from typing import Any

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.core.deps import get_auth_service
from app.core.errors import ForbiddenError, UnauthorizedError
from app.services.auth_service import AuthService
from app.services.organization_service import list_memberships

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class CurrentUser:
    id: str
    username: str
    email: str
    role: str
    organization_id: str | None
    organization_role: str | None
    memberships: tuple[dict[str, Any], ...] = field(default_factory=tuple)

    def membership_for(self, organization_id: str) -> dict[str, Any] | None:
        for membership in self.memberships:
            if membership["organization_id"] == organization_id:
                return membership
        return None


def resolve_current_user(auth: AuthService, token: str, requested_organization: str | None = None) -> CurrentUser:
    claims = auth.verify_token(token)
    user = auth.database.find_by_id("users", claims["sub"])
    if not user:
        raise UnauthorizedError("User not found")
    if not user["is_active"]:
        raise UnauthorizedError("Account is deactivated")
    if auth.is_locked(user):
        raise ForbiddenError("Account is temporarily locked due to multiple failed login attempts")

    memberships = tuple(list_memberships(auth.database, user["id"]))
    organization_id = requested_organization or claims.get("org")
    current = None
    if organization_id:
        current = next((m for m in memberships if m["organization_id"] == organization_id), None)
        if current is None and requested_organization:
            raise ForbiddenError("You are not a member of this organization")

    return CurrentUser(
        id=user["id"],
        username=user["username"],
        email=user["email"],
        role=user["role"],
        organization_id=current["organization_id"] if current else None,
        organization_role=current["role"] if current else None,
        memberships=memberships,
    )


def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    auth: AuthService = Depends(get_auth_service),
) -> CurrentUser:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise UnauthorizedError("Access token required")
    current = resolve_current_user(
        auth,
        credentials.credentials,
        request.headers.get("x-organization-id") or None,
    )
    request.state.user_id = current.id
    return current


def require_organization(current: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    if not current.organization_id:
        raise ForbiddenError("Organization context required")
    return current


def get_optional_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    auth: AuthService = Depends(get_auth_service),
) -> CurrentUser | None:
    """The caller when a usable bearer token is present, ``None`` for anonymous requests."""
    if credentials is None or credentials.scheme.lower() != "bearer":
        return None
    try:
        return get_current_user(request, credentials, auth)
    except (UnauthorizedError, ForbiddenError):
        return None
