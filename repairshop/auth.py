from dataclasses import dataclass
from enum import Enum

from fastapi import Depends, HTTPException, Request, status


class Role(str, Enum):
    CUSTOMER = 'customer'
    EMPLOYEE = 'employee'
    MANAGER = 'manager'
    ADMIN = 'admin'


class PortalMode(str, Enum):
    CUSTOMER = 'customer'
    STAFF = 'staff'


class Capability(str, Enum):
    VIEW_OWN_TICKETS = 'view_own_tickets'
    VIEW_DASHBOARD = 'view_dashboard'
    MANAGE_TICKETS = 'manage_tickets'
    EDIT_ESTIMATES = 'edit_estimates'
    ADJUST_STOCK = 'adjust_stock'
    MANAGE_INVENTORY = 'manage_inventory'
    VIEW_CUSTOMERS = 'view_customers'
    SEND_EMAIL = 'send_email'
    VIEW_TEAM = 'view_team'
    MANAGE_SETTINGS = 'manage_settings'
    EXPORT_DATA = 'export_data'
    MANAGE_TEAM = 'manage_team'
    DELETE_AUDIT_LOGS = 'delete_audit_logs'
    CLEAR_LOCKOUTS = 'clear_lockouts'


_STAFF_CAPABILITIES = frozenset(
    {
        Capability.VIEW_DASHBOARD,
        Capability.MANAGE_TICKETS,
        Capability.EDIT_ESTIMATES,
        Capability.ADJUST_STOCK,
        Capability.VIEW_CUSTOMERS,
        Capability.SEND_EMAIL,
    }
)
_MANAGEMENT_CAPABILITIES = _STAFF_CAPABILITIES | {
    Capability.MANAGE_INVENTORY,
    Capability.VIEW_TEAM,
    Capability.MANAGE_SETTINGS,
    Capability.EXPORT_DATA,
}

# Single authority for what each role may do.
ROLE_CAPABILITIES: dict[Role, frozenset[Capability]] = {
    Role.CUSTOMER: frozenset({Capability.VIEW_OWN_TICKETS}),
    Role.EMPLOYEE: _STAFF_CAPABILITIES,
    Role.MANAGER: frozenset(_MANAGEMENT_CAPABILITIES),
    Role.ADMIN: frozenset(
        _MANAGEMENT_CAPABILITIES
        | {
            Capability.MANAGE_TEAM,
            Capability.DELETE_AUDIT_LOGS,
            Capability.CLEAR_LOCKOUTS,
        }
    ),
}

ROLE_RANK: dict[Role, int] = {
    Role.ADMIN: 1,
    Role.MANAGER: 2,
    Role.EMPLOYEE: 3,
    Role.CUSTOMER: 4,
}


@dataclass
class Principal:
    id: int
    email: str
    full_name: str | None
    role: Role
    active: bool

    @property
    def display_name(self) -> str:
        return self.full_name or self.email


def capabilities_for(role: Role) -> frozenset[Capability]:
    return ROLE_CAPABILITIES.get(role, frozenset())


def has_capability(role: Role, capability: Capability) -> bool:
    return capability in capabilities_for(role)


def is_staff_role(role: Role) -> bool:
    return has_capability(role, Capability.VIEW_DASHBOARD)


def is_management_role(role: Role) -> bool:
    return has_capability(role, Capability.MANAGE_SETTINGS)


def portal_allows_role(portal: PortalMode, role: Role) -> bool:
    if portal == PortalMode.STAFF:
        return is_staff_role(role)
    return not is_staff_role(role)


def home_path_for(role: Role) -> str:
    return '/dashboard' if is_staff_role(role) else '/my-tickets'


def get_current_principal(request: Request) -> Principal:
    principal = getattr(request.state, 'principal', None)
    if not principal:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED)
    if not principal.active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN)
    return principal


def require_capability(capability: Capability):
    def _dep(principal: Principal = Depends(get_current_principal)) -> Principal:
        if not has_capability(principal.role, capability):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN)
        return principal

    return _dep
