"""Role template editing for one clinic.

An administrator selects one role at a time, edits a working copy of
that role's permission template, and saves it. Nothing is persisted until
`save()`; switching role throws the unsaved working copy away.

Super roles (SUPER_ADMIN, OWNER) always resolve to every permission, so
their templates are shown in full and cannot be edited.
"""

import logging

from clinic_access.auth.permissions import (
    ROLE_DEFAULTS,
    SUPER_ROLES,
    Action,
    Module,
    Permission,
    Role,
)
from clinic_access.middleware.exceptions import (
    BackendError,
    InvalidPermissionError,
    PermissionSaveError,
)
from clinic_access.schemas.permissions import to_permissions
from clinic_access.services.permission_api import PermissionsAPI
from clinic_access.utils.cache import QueryCache, template_key

logger = logging.getLogger(__name__)


class TemplateManager:
    def __init__(self, api: PermissionsAPI, cache: QueryCache, clinic_id: int):
        self._api = api
        self._cache = cache
        self.clinic_id = clinic_id
        self.selected_role: Role | None = None
        self.working_set: set[Permission] = set()
        self.is_custom = False
        self.last_error: Exception | None = None
        self._saved_set: frozenset[Permission] = frozenset()

    @property
    def is_editable(self) -> bool:
        return self.selected_role is not None and self.selected_role not in SUPER_ROLES

    @property
    def is_dirty(self) -> bool:
        return frozenset(self.working_set) != self._saved_set

    def is_granted(self, module: Module | str, action: Action | str) -> bool:
        try:
            return Permission.of(module, action) in self.working_set
        except ValueError:
            return False

    async def select_role(self, role: Role | str) -> frozenset[Permission]:
        """Load `role`'s template (or its factory defaults) as the working set."""
        try:
            role = Role(role)
        except ValueError:
            raise InvalidPermissionError(f"Unknown role: {role!r}") from None

        template = None
        if role not in SUPER_ROLES:
            template = await self._api.get_template(self.clinic_id, role)

        if template is None:
            perms, self.is_custom = ROLE_DEFAULTS[role], False
        else:
            perms, self.is_custom = to_permissions(template.permissions), True
        self.selected_role = role
        self.last_error = None
        self.working_set = set(perms)
        self._saved_set = frozenset(perms)
        return frozenset(self.working_set)

    def toggle_grant(self, module: Module | str, action: Action | str, on: bool) -> bool:
        """Set one pair in the working set. Returns False when nothing changed."""
        if not self.is_editable:
            return False
        try:
            perm = Permission.of(module, action)
        except ValueError as e:
            raise InvalidPermissionError(str(e)) from e

        before = perm in self.working_set
        if on:
            self.working_set.add(perm)
        else:
            self.working_set.discard(perm)
        return before != on

    def restore_defaults(self, *, confirmed: bool = False) -> bool:
        """Reset the working set to the role's factory defaults.

        Destroys any customisation, so the caller must pass confirmed=True
        once the administrator agreed. Returns whether the reset was applied.
        """
        if self.selected_role is None or not confirmed:
            return False
        self.working_set = set(ROLE_DEFAULTS[self.selected_role])
        return True

    async def save(self) -> frozenset[Permission]:
        """Persist the working set as the clinic's template for the role.

        On success the template key is invalidated, which re-resolves every
        provider holding this role. On failure the working set is kept.
        """
        if self.selected_role is None:
            raise InvalidPermissionError("Select a role before saving its template")

        role = self.selected_role
        perms = frozenset(self.working_set)
        try:
            await self._api.upsert_template(self.clinic_id, role, perms)
        except BackendError as e:
            logger.warning(f"Saving {role.value} template for clinic {self.clinic_id} failed: {e}")
            self.last_error = e
            raise PermissionSaveError(saved=[], failed=["template"], errors={"template": e}) from e

        self.last_error = None
        self._saved_set = perms
        self.is_custom = True
        logger.info(
            f"Saved {role.value} template for clinic {self.clinic_id} ({len(perms)} permissions)"
        )
        await self._cache.invalidate(template_key(self.clinic_id, role.value))
        return perms
