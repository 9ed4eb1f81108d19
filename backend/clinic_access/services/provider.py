"""Session-scoped permission provider.

One PermissionProvider per user session. It owns the session's resolved
permission set and is the only writer of it; editors request backend
writes and cache invalidation, never touch the set directly.

Lifecycle:
  idle     no clinic selected (or logged out) → every check denied
  loading  fetching role / grants / template   → every check denied
  ready    resolved set published               → checks answered from it
  error    last fetch failed                    → every check denied

Each load takes a new generation number; a fetch that completes after a
newer load started (clinic switch, invalidation, logout) is discarded.
"""

from __future__ import annotations

import enum
import fnmatch
import logging

from clinic_access.auth.permissions import SUPER_ROLES, Action, Module, Permission, Role
from clinic_access.auth.resolver import ResolvedPermissionSet
from clinic_access.middleware.exceptions import BackendError
from clinic_access.schemas.permissions import to_permissions
from clinic_access.services.permission_api import PermissionsAPI
from clinic_access.utils.cache import QueryCache, access_key, template_key

logger = logging.getLogger(__name__)


class ProviderState(str, enum.Enum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    ERROR = "error"


class PermissionProvider:
    def __init__(
        self,
        api: PermissionsAPI,
        cache: QueryCache,
        user_id: str,
        clinic_id: int | None = None,
    ):
        self._api = api
        self._cache = cache
        self.user_id = user_id
        self.clinic_id = clinic_id
        self.state = ProviderState.IDLE
        self.error: Exception | None = None
        self._resolved: ResolvedPermissionSet | None = None
        self._generation = 0
        self._unsubscribe = cache.subscribe(self._on_invalidate)

    # ── Read side (synchronous, never raises) ───────────────

    @property
    def is_loading(self) -> bool:
        return self.state is ProviderState.LOADING

    @property
    def role(self) -> Role | None:
        return self._resolved.role if self._resolved else None

    @property
    def permissions(self) -> frozenset[Permission]:
        return self._resolved.permissions if self._resolved else frozenset()

    def snapshot(self) -> ResolvedPermissionSet | None:
        return self._resolved if self.state is ProviderState.READY else None

    def has_permission(self, module: Module | str, action: Action | str) -> bool:
        resolved = self.snapshot()
        if resolved is None:
            return False
        return resolved.allows(module, action)

    def allowed_actions(self, module: Module) -> list[Action]:
        resolved = self.snapshot()
        return resolved.allowed_actions(module) if resolved else []

    # ── Loading ─────────────────────────────────────────────

    async def load(self) -> bool:
        """Discard the current set and resolve it again for the active clinic.

        Returns True if this call's result was published.
        """
        self._generation += 1
        generation = self._generation
        self._resolved = None
        self.error = None

        clinic_id = self.clinic_id
        if clinic_id is None:
            self.state = ProviderState.IDLE
            return False
        self.state = ProviderState.LOADING

        try:
            access = await self._cache.fetch(
                access_key(clinic_id, self.user_id),
                lambda: self._api.get_access(clinic_id, self.user_id),
            )
            template = None
            if access.role not in SUPER_ROLES:
                template = await self._cache.fetch(
                    template_key(clinic_id, access.role.value),
                    lambda: self._api.get_template(clinic_id, access.role),
                )
        except BackendError as e:
            if generation != self._generation:
                return False
            logger.warning(
                f"Permission resolve failed for user {self.user_id} in clinic {clinic_id}: {e}"
            )
            self.error = e
            self.state = ProviderState.ERROR
            return False

        if generation != self._generation:
            logger.debug(f"Discarding stale permission fetch for clinic {clinic_id}")
            return False

        self._resolved = ResolvedPermissionSet.build(
            role=access.role,
            template=to_permissions(template.permissions) if template else None,
            grants=to_permissions(access.permissions),
            clinic_id=clinic_id,
        )
        self.state = ProviderState.READY
        logger.debug(
            f"Resolved {len(self._resolved.permissions)} permissions for user "
            f"{self.user_id} ({access.role.value}) in clinic {clinic_id}"
        )
        return True

    async def switch_clinic(self, clinic_id: int | None) -> bool:
        self.clinic_id = clinic_id
        return await self.load()

    async def refresh(self) -> bool:
        """Invalidate this session's cached reads and resolve again."""
        if self.clinic_id is None:
            return await self.load()
        await self._cache.invalidate(access_key(self.clinic_id, self.user_id))
        # The invalidation callback reloaded us; report the outcome.
        return self.state is ProviderState.READY

    def logout(self) -> None:
        self._generation += 1
        self.clinic_id = None
        self._resolved = None
        self.error = None
        self.state = ProviderState.IDLE

    def close(self) -> None:
        self.logout()
        self._unsubscribe()

    # ── Invalidation ────────────────────────────────────────

    def _watched_keys(self) -> list[str]:
        keys = [access_key(self.clinic_id, self.user_id)]
        roles = [self.role] if self.role is not None else list(Role)
        keys.extend(template_key(self.clinic_id, r.value) for r in roles)
        return keys

    async def _on_invalidate(self, pattern: str) -> None:
        if self.clinic_id is None:
            return
        if any(fnmatch.fnmatchcase(key, pattern) for key in self._watched_keys()):
            logger.debug(f"Provider for user {self.user_id} invalidated by {pattern}")
            await self.load()
