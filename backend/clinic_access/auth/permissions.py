"""Permission catalog and role defaults for clinic RBAC.

Design:
  - A permission is a (module, action) pair. The CATALOG below is the single
    source of truth for which pairs exist; editors and the resolver never
    carry their own copies.
  - Each clinic role has a set of FACTORY DEFAULT permissions (defined here,
    not in the backend). A clinic can override them per role with a
    persisted template; users can additionally hold explicit grants.
  - SUPER_ADMIN and OWNER are "super roles": they always resolve to every
    permission, whatever the template or explicit grants say.

Permission key format: `<module>:<action>` (e.g. "clients:view").
"""

from __future__ import annotations

import enum
from typing import NamedTuple


class Module(str, enum.Enum):
    DASHBOARD = "dashboard"
    USERS = "users"
    CLIENTS = "clients"
    APPOINTMENTS = "appointments"
    FINANCIAL = "financial"
    REPORTS = "reports"
    SETTINGS = "settings"
    CRM = "crm"
    INVENTORY = "inventory"
    PROFESSIONALS = "professionals"
    TASKS = "tasks"
    ATTENDANCE = "attendance"


class Action(str, enum.Enum):
    VIEW = "view"
    CREATE = "create"
    EDIT = "edit"
    DELETE = "delete"
    EXPORT = "export"


class Role(str, enum.Enum):
    SUPER_ADMIN = "SUPER_ADMIN"
    OWNER = "OWNER"
    MANAGER = "MANAGER"
    PROFESSIONAL = "PROFESSIONAL"
    RECEPTIONIST = "RECEPTIONIST"
    FINANCIAL = "FINANCIAL"
    MARKETING = "MARKETING"
    STAFF = "STAFF"


SUPER_ROLES: frozenset[Role] = frozenset({Role.SUPER_ADMIN, Role.OWNER})

# Roles allowed to administer templates and other users' permissions
MANAGER_ROLES: frozenset[Role] = frozenset({Role.SUPER_ADMIN, Role.OWNER, Role.MANAGER})


class Permission(NamedTuple):
    module: Module
    action: Action

    @property
    def key(self) -> str:
        return f"{self.module.value}:{self.action.value}"

    @classmethod
    def of(cls, module: Module | str, action: Action | str) -> "Permission":
        """Build a catalog permission, raising ValueError for unknown pairs."""
        perm = cls(Module(module), Action(action))
        if perm not in ALL_PERMISSIONS:
            raise ValueError(f"{perm.key} is not defined in the permission catalog")
        return perm

    @classmethod
    def parse(cls, key: str) -> "Permission":
        module, sep, action = key.partition(":")
        if not sep:
            raise ValueError(f"Invalid permission key: {key!r}")
        return cls.of(module, action)


# ── Catalog: module → valid actions ─────────────────────────

_CRUD = (Action.VIEW, Action.CREATE, Action.EDIT, Action.DELETE)

CATALOG: dict[Module, tuple[Action, ...]] = {
    Module.DASHBOARD: (Action.VIEW,),
    Module.USERS: _CRUD,
    Module.CLIENTS: _CRUD,
    Module.APPOINTMENTS: _CRUD,
    Module.FINANCIAL: _CRUD,
    Module.REPORTS: (Action.VIEW, Action.EXPORT),
    Module.SETTINGS: (Action.VIEW, Action.EDIT),
    Module.CRM: _CRUD,
    Module.INVENTORY: _CRUD,
    Module.PROFESSIONALS: _CRUD,
    Module.TASKS: _CRUD,
    Module.ATTENDANCE: (Action.VIEW, Action.CREATE, Action.EDIT, Action.EXPORT),
}

ALL_PERMISSIONS: frozenset[Permission] = frozenset(
    Permission(module, action)
    for module, actions in CATALOG.items()
    for action in actions
)


def module_permissions(module: Module) -> frozenset[Permission]:
    """Every catalog pair of one module."""
    return frozenset(Permission(module, action) for action in CATALOG[module])


# ── Labels (rendered by every editor) ──────────────────────

MODULE_LABELS: dict[Module, tuple[str, str]] = {
    Module.DASHBOARD: ("Dashboard", "Access to the main dashboard"),
    Module.USERS: ("Users", "Management of clinic users"),
    Module.CLIENTS: ("Clients", "Client and patient records"),
    Module.APPOINTMENTS: ("Appointments", "Scheduling and consultations"),
    Module.FINANCIAL: ("Financial", "Financial management and payments"),
    Module.REPORTS: ("Reports", "Reports and statistics"),
    Module.SETTINGS: ("Settings", "Clinic settings"),
    Module.CRM: ("CRM", "Leads and opportunities"),
    Module.INVENTORY: ("Inventory", "Products and stock"),
    Module.PROFESSIONALS: ("Professionals", "Professional profiles and schedules"),
    Module.TASKS: ("Tasks", "Team tasks"),
    Module.ATTENDANCE: ("Attendance", "Staff time and attendance"),
}

ACTION_LABELS: dict[Action, str] = {
    Action.VIEW: "View",
    Action.CREATE: "Create",
    Action.EDIT: "Edit",
    Action.DELETE: "Delete",
    Action.EXPORT: "Export",
}

ROLE_LABELS: dict[Role, str] = {
    Role.SUPER_ADMIN: "Super Admin",
    Role.OWNER: "Owner",
    Role.MANAGER: "Manager",
    Role.PROFESSIONAL: "Professional",
    Role.RECEPTIONIST: "Receptionist",
    Role.FINANCIAL: "Financial",
    Role.MARKETING: "Marketing",
    Role.STAFF: "Staff",
}


# ── Role → factory default permissions ──────────────────────

def _perms(*keys: str) -> frozenset[Permission]:
    return frozenset(Permission.parse(k) for k in keys)


ROLE_DEFAULTS: dict[Role, frozenset[Permission]] = {
    Role.SUPER_ADMIN: ALL_PERMISSIONS,
    Role.OWNER: ALL_PERMISSIONS,

    Role.MANAGER: _perms(
        "dashboard:view",
        "users:view", "users:create", "users:edit",
        "clients:view", "clients:create", "clients:edit", "clients:delete",
        "appointments:view", "appointments:create", "appointments:edit", "appointments:delete",
        "financial:view", "financial:create", "financial:edit",
        "reports:view", "reports:export",
        "settings:view",
        "crm:view", "crm:create", "crm:edit",
        "inventory:view", "inventory:create", "inventory:edit",
        "professionals:view", "professionals:create", "professionals:edit",
        "tasks:view", "tasks:create", "tasks:edit", "tasks:delete",
        "attendance:view", "attendance:create", "attendance:edit", "attendance:export",
    ),

    Role.PROFESSIONAL: _perms(
        "dashboard:view",
        "clients:view",
        "appointments:view",
        "professionals:view",
        "tasks:view", "tasks:create", "tasks:edit",
        "attendance:view", "attendance:create",
    ),

    Role.RECEPTIONIST: _perms(
        "dashboard:view",
        "clients:view", "clients:create", "clients:edit",
        "appointments:view", "appointments:create", "appointments:edit", "appointments:delete",
        "professionals:view",
        "tasks:view",
        "attendance:view", "attendance:create",
    ),

    Role.FINANCIAL: _perms(
        "dashboard:view",
        "clients:view",
        "financial:view", "financial:create", "financial:edit", "financial:delete",
        "reports:view", "reports:export",
        "inventory:view",
        "tasks:view",
        "attendance:view", "attendance:export",
    ),

    Role.MARKETING: _perms(
        "dashboard:view",
        "clients:view",
        "reports:view", "reports:export",
        "crm:view", "crm:create", "crm:edit",
        "tasks:view", "tasks:create",
    ),

    Role.STAFF: _perms(
        "dashboard:view",
        "clients:view",
        "appointments:view",
        "tasks:view",
        "attendance:view", "attendance:create",
    ),
}
