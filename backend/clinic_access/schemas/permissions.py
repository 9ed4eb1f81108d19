"""Pydantic schemas for the permission wire format.

The clinic backend speaks camelCase JSON; every model accepts both the
alias and the field name.
"""

import logging

from pydantic import BaseModel, Field, field_validator
from pydantic.alias_generators import to_camel

from clinic_access.auth.permissions import Action, Module, Permission, Role

logger = logging.getLogger(__name__)

_WIRE = {"alias_generator": to_camel, "populate_by_name": True}


class PermissionItem(BaseModel):
    module: Module
    action: Action

    model_config = _WIRE

    def to_permission(self) -> Permission:
        return Permission(self.module, self.action)

    @classmethod
    def from_permission(cls, perm: Permission) -> "PermissionItem":
        return cls(module=perm.module, action=perm.action)


def _known_rows(rows: list) -> list:
    """Drop legacy rows whose module/action is not in the catalog."""
    kept = []
    for row in rows or []:
        if isinstance(row, PermissionItem):
            kept.append(row)
            continue
        module = row.get("module") if isinstance(row, dict) else None
        action = row.get("action") if isinstance(row, dict) else None
        try:
            Permission.of(module, action)
        except ValueError:
            logger.warning(f"Ignoring unknown permission row {module}:{action}")
            continue
        kept.append(row)
    return kept


def to_permissions(items: list[PermissionItem]) -> frozenset[Permission]:
    return frozenset(item.to_permission() for item in items)


def to_items(perms) -> list[PermissionItem]:
    return [PermissionItem.from_permission(p) for p in sorted(perms)]


# ── Backend payloads ──────────────────────────────────────────

class AccessOut(BaseModel):
    """A user's role and explicit grants within one clinic."""
    clinic_user_id: int | None = None
    role: Role
    permissions: list[PermissionItem] = Field(default_factory=list)

    model_config = _WIRE

    @field_validator("permissions", mode="before")
    @classmethod
    def drop_unknown_rows(cls, rows: list) -> list:
        return _known_rows(rows)


class RoleUpdate(BaseModel):
    role: Role

    model_config = _WIRE


class PermissionBatch(BaseModel):
    permissions: list[PermissionItem]

    model_config = _WIRE


class RoleTemplate(BaseModel):
    clinic_id: int
    role: Role
    permissions: list[PermissionItem] = Field(default_factory=list)

    model_config = _WIRE

    @field_validator("permissions", mode="before")
    @classmethod
    def drop_unknown_rows(cls, rows: list) -> list:
        return _known_rows(rows)


# ── Session / admin API ───────────────────────────────────────

class ModuleAccess(BaseModel):
    module: Module
    label: str
    actions: list[Action]


class SessionPermissionsOut(BaseModel):
    user_id: str
    clinic_id: int | None
    role: Role | None
    is_loading: bool
    error: str | None = None
    permissions: list[str]
    modules: list[ModuleAccess]


class TemplateOut(BaseModel):
    clinic_id: int
    role: Role
    editable: bool
    is_custom: bool
    permissions: list[str]


class PermissionKeys(BaseModel):
    permissions: list[str]

    @field_validator("permissions")
    @classmethod
    def validate_keys(cls, keys: list[str]) -> list[str]:
        for key in keys:
            Permission.parse(key)
        return keys

    def to_permissions(self) -> frozenset[Permission]:
        return frozenset(Permission.parse(k) for k in self.permissions)


class UserPermissionsOut(BaseModel):
    clinic_id: int
    user_id: str
    role: Role
    permissions: list[str]
    modules: dict[str, bool]


class UserPermissionsUpdate(PermissionKeys):
    role: Role | None = None


class CopyPermissionsRequest(BaseModel):
    source_user_id: str
