"""Permission resolution.

Rules:
  1. No role (not loaded, logged out) → every check is denied.
  2. SUPER_ADMIN / OWNER → every check passes, explicit grants are ignored.
  3. Any other role → the pair must be in the resolved set, which is the
     union of the role template and the user's explicit grants.

Checks are total: unknown module/action values resolve to False.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

from clinic_access.auth.permissions import (
    ALL_PERMISSIONS,
    CATALOG,
    ROLE_DEFAULTS,
    SUPER_ROLES,
    Action,
    Module,
    Permission,
    Role,
)


def _coerce_role(role: Role | str | None) -> Role | None:
    if role is None or isinstance(role, Role):
        return role
    try:
        return Role(role)
    except ValueError:
        return None


def _normalise(grants: Iterable) -> frozenset[Permission]:
    """Coerce grants to catalog `Permission` values, dropping anything else.

    Plain ("clients", "view") tuples are accepted; they do not hash like
    the enum-backed `Permission` and would never match a set lookup.
    """
    if isinstance(grants, frozenset) and grants <= ALL_PERMISSIONS:
        return grants
    perms = set()
    for grant in grants:
        try:
            perms.add(Permission.of(*grant))
        except (TypeError, ValueError):
            continue
    return frozenset(perms)


def is_super_user_or_owner(role: Role | str | None) -> bool:
    return _coerce_role(role) in SUPER_ROLES


def check_permission(
    explicit_grants: Iterable[Permission],
    role: Role | str | None,
    module: Module | str,
    action: Action | str,
) -> bool:
    """Decide a single (module, action) check. Never raises."""
    role = _coerce_role(role)
    if role is None:
        return False
    if role in SUPER_ROLES:
        return True

    try:
        wanted = Permission(Module(module), Action(action))
    except ValueError:
        return False
    return wanted in _normalise(explicit_grants)


def resolve_permissions(
    role: Role | None,
    template: Iterable[Permission] | None = None,
    grants: Iterable[Permission] = (),
) -> frozenset[Permission]:
    """Compute the effective permission set for a clinic membership.

    `template` is the clinic's custom template for the role; None falls back
    to the factory defaults. Explicit grants are unioned on top.
    """
    if role is None:
        return frozenset()
    if role in SUPER_ROLES:
        return ALL_PERMISSIONS

    base = ROLE_DEFAULTS[role] if template is None else _normalise(template)
    return base | _normalise(grants)


@dataclass(frozen=True)
class ResolvedPermissionSet:
    """Immutable snapshot of one session's effective permissions."""

    role: Role | None
    permissions: frozenset[Permission] = field(default_factory=frozenset)
    clinic_id: int | None = None

    @classmethod
    def build(
        cls,
        role: Role | None,
        template: Iterable[Permission] | None,
        grants: Iterable[Permission],
        clinic_id: int | None = None,
    ) -> "ResolvedPermissionSet":
        return cls(
            role=role,
            permissions=resolve_permissions(role, template, grants),
            clinic_id=clinic_id,
        )

    def allows(self, module: Module | str, action: Action | str) -> bool:
        return check_permission(self.permissions, self.role, module, action)

    def allowed_actions(self, module: Module) -> list[Action]:
        return [a for a in CATALOG[module] if self.allows(module, a)]

    def as_keys(self) -> list[str]:
        """Sorted `module:action` keys (stable for JSON responses)."""
        return sorted(p.key for p in self.permissions)
