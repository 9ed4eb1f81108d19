"""Per-user permission editing.

Edits one clinic member's role and explicit grants. Explicit grants are
additive to the role template. Saving issues up to two independent writes:

  1. role   PATCH the membership role (only when it changed)
  2. grants delete-all-then-insert of the explicit grant set

Neither write is rolled back when the other fails; PermissionSaveError
reports which part was persisted, and which part was left empty when the
insert after the delete failed.
"""

from __future__ import annotations

import logging

from clinic_access.auth.permissions import (
    CATALOG,
    Action,
    Module,
    Permission,
    Role,
    module_permissions,
)
from clinic_access.middleware.exceptions import (
    BackendError,
    GrantsClearedError,
    InvalidPermissionError,
    PermissionSaveError,
)
from clinic_access.schemas.permissions import to_permissions
from clinic_access.services.permission_api import PermissionsAPI
from clinic_access.utils.cache import QueryCache, access_key

logger = logging.getLogger(__name__)


class UserPermissionEditor:
    def __init__(self, api: PermissionsAPI, cache: QueryCache, clinic_id: int, user_id: str):
        self._api = api
        self._cache = cache
        self.clinic_id = clinic_id
        self.user_id = user_id
        self.role: Role | None = None
        self.staged_role: Role | None = None
        self.working_set: set[Permission] = set()
        self.last_error: PermissionSaveError | None = None
        self._saved_grants: frozenset[Permission] = frozenset()
        self._loaded = False

    async def load(self) -> None:
        access = await self._api.get_access(self.clinic_id, self.user_id)
        self.role = self.staged_role = access.role
        self._saved_grants = to_permissions(access.permissions)
        self.working_set = set(self._saved_grants)
        self.last_error = None
        self._loaded = True

    @property
    def role_changed(self) -> bool:
        return self.staged_role is not None and self.staged_role != self.role

    @property
    def grants_changed(self) -> bool:
        return frozenset(self.working_set) != self._saved_grants

    def set_role(self, role: Role | str) -> None:
        try:
            self.staged_role = Role(role)
        except ValueError:
            raise InvalidPermissionError(f"Unknown role: {role!r}") from None

    def toggle_module(self, module: Module | str, on: bool) -> None:
        """Grant or revoke every catalog action of a module."""
        try:
            perms = module_permissions(Module(module))
        except ValueError:
            raise InvalidPermissionError(f"Unknown module: {module!r}") from None
        if on:
            self.working_set |= perms
        else:
            self.working_set -= perms

    def toggle_action(self, module: Module | str, action: Action | str, on: bool) -> None:
        try:
            perm = Permission.of(module, action)
        except ValueError as e:
            raise InvalidPermissionError(str(e)) from e
        if on:
            self.working_set.add(perm)
        else:
            self.working_set.discard(perm)

    def module_enabled(self, module: Module) -> bool:
        """Module checkbox state: at least one of its actions is granted."""
        return any(p in self.working_set for p in module_permissions(module))

    def module_states(self) -> dict[Module, bool]:
        return {module: self.module_enabled(module) for module in CATALOG}

    async def save(self) -> list[str]:
        """Persist the staged role and the grant set. Returns the saved parts."""
        if not self._loaded:
            raise InvalidPermissionError("Load the user's permissions before saving")

        saved: list[str] = []
        cleared: list[str] = []
        errors: dict[str, Exception] = {}

        if self.role_changed:
            try:
                await self._api.update_role(self.clinic_id, self.user_id, self.staged_role)
            except BackendError as e:
                errors["role"] = e
            else:
                self.role = self.staged_role
                saved.append("role")

        grants = frozenset(self.working_set)
        try:
            await self._api.replace_grants(self.clinic_id, self.user_id, grants)
        except GrantsClearedError as e:
            errors["grants"] = e
            cleared.append("grants")
            self._saved_grants = frozenset()
        except BackendError as e:
            errors["grants"] = e
        else:
            self._saved_grants = grants
            saved.append("grants")

        if saved:
            logger.info(
                f"Saved {', '.join(saved)} for user {self.user_id} in clinic {self.clinic_id}"
            )
        if saved or cleared:
            await self._cache.invalidate(access_key(self.clinic_id, self.user_id))

        if errors:
            logger.warning(
                f"Saving permissions for user {self.user_id} in clinic {self.clinic_id} "
                f"failed for {', '.join(errors)}"
            )
            self.last_error = PermissionSaveError(
                saved=saved, failed=list(errors), errors=errors, cleared=cleared
            )
            raise self.last_error

        self.last_error = None
        return saved
