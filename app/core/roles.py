from enum import Enum


class Role(str, Enum):
    ADMIN = "admin"
    MANAGER = "manager"
    AGENT = "agent"
    REPRESENTATIVE = "representative"
    CUSTOMER = "customer"
    WAREHOUSE_MANAGER = "warehouse_manager"
    FINANCIAL_MANAGER = "financial_manager"
    LOGISTICS_COORDINATOR = "logistics_coordinator"


# Roles a user may pick for themselves at registration.
SELF_SERVICE_ROLES = frozenset(Role) - {Role.ADMIN, Role.MANAGER}


class Capability(str, Enum):
    TASK_DELETE = "task.delete"
    TASK_MANAGE_ANY = "task.manage_any"
    ORDER_CREATE = "order.create"
    ORDER_MANAGE = "order.manage"
    ORDER_DELETE = "order.delete"
    CUSTOMER_MANAGE = "customer.manage"
    CUSTOMER_DELETE = "customer.delete"
    ORGANIZATION_MANAGE_MEMBERS = "organization.manage_members"
    AI_TICKET_RESPONSE = "ai.ticket_response"
    AI_ORDER_ANALYSIS = "ai.order_analysis"
    AI_INVENTORY = "ai.inventory"
    AI_PERFORMANCE = "ai.performance"
    DASHBOARD_VIEW = "dashboard.view"


_STAFF = {Capability.ORDER_CREATE, Capability.DASHBOARD_VIEW}

ROLE_CAPABILITIES: dict[Role, frozenset[Capability]] = {
    Role.ADMIN: frozenset(Capability),
    Role.MANAGER: frozenset(Capability) - {Capability.ORGANIZATION_MANAGE_MEMBERS},
    Role.AGENT: frozenset(_STAFF | {Capability.CUSTOMER_MANAGE, Capability.AI_TICKET_RESPONSE}),
    Role.REPRESENTATIVE: frozenset(_STAFF | {Capability.CUSTOMER_MANAGE, Capability.AI_ORDER_ANALYSIS}),
    Role.CUSTOMER: frozenset(),
    Role.WAREHOUSE_MANAGER: frozenset(_STAFF | {Capability.ORDER_MANAGE, Capability.AI_INVENTORY}),
    Role.FINANCIAL_MANAGER: frozenset(
        _STAFF | {Capability.ORDER_MANAGE, Capability.AI_ORDER_ANALYSIS, Capability.AI_PERFORMANCE}
    ),
    Role.LOGISTICS_COORDINATOR: frozenset(_STAFF | {Capability.ORDER_MANAGE}),
}


def parse_role(value: str | None) -> Role | None:
    if not value:
        return None
    try:
        return Role(value.strip().lower())
    except ValueError:
        return None


def has_capability(role: str | Role | None, capability: Capability) -> bool:
    parsed = role if isinstance(role, Role) else parse_role(role)
    if parsed is None:
        return False
    return capability in ROLE_CAPABILITIES[parsed]
