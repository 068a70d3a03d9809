from collections.abc import Callable

from fastapi import Depends

from app.core.errors import ForbiddenError
from app.core.roles import Capability, Role, has_capability, parse_role
from app.core.security_current import CurrentUser, get_current_user, require_organization


def _role_allowed(current: CurrentUser, allowed: frozenset[Role]) -> bool:
    return parse_role(current.role) in allowed or parse_role(current.organization_role) in allowed


def user_has_capability(current: CurrentUser, capability: Capability) -> bool:
    """Global role or the role held in the current organization may grant a capability."""
    return has_capability(current.role, capability) or has_capability(current.organization_role, capability)


def authorize(*allowed_roles: Role) -> Callable[[CurrentUser], CurrentUser]:
    allowed = frozenset(allowed_roles)
    if not allowed:
        raise ValueError("At least one allowed role is required")

    def dependency(current: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if not _role_allowed(current, allowed):
            raise ForbiddenError(
                "Insufficient role for this action",
                details={"required": sorted(role.value for role in allowed)},
            )
        return current

    return dependency


def require_capability(capability: Capability) -> Callable[[CurrentUser], CurrentUser]:
    def dependency(current: CurrentUser = Depends(require_organization)) -> CurrentUser:
        ensure_capability(current, capability)
        return current

    return dependency


def ensure_capability(current: CurrentUser, capability: Capability) -> None:
    if not user_has_capability(current, capability):
        raise ForbiddenError(
            "Insufficient permission for this action",
            details={"required": capability.value},
        )
