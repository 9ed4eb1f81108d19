"""FastAPI dependencies for sessions and permission gating.

Dependencies:
  get_session              → SessionContext from the request (or 401)
  get_provider             → the session's PermissionProvider, loaded
  require_clinic           → active clinic id (or 403)
  require_permission(...)  → restrict to sessions holding ALL listed pairs
  require_clinic_manager   → restrict to SUPER_ADMIN / OWNER / MANAGER
"""

from fastapi import Depends, Request

from clinic_access.auth.permissions import MANAGER_ROLES, Action, Module, Permission
from clinic_access.clinic_context import get_current_session
from clinic_access.middleware.exceptions import ClinicContextError, PermissionDeniedError
from clinic_access.services.permission_api import PermissionsAPI
from clinic_access.services.provider import PermissionProvider, ProviderState
from clinic_access.services.sessions import SessionContext, SessionRegistry
from clinic_access.utils.cache import QueryCache


# ── Session ─────────────────────────────────────────────────

async def get_session() -> SessionContext:
    return get_current_session()


def get_registry(request: Request) -> SessionRegistry:
    return request.app.state.sessions


def get_cache(request: Request) -> QueryCache:
    return request.app.state.cache


async def get_provider(
    session: SessionContext = Depends(get_session),
    registry: SessionRegistry = Depends(get_registry),
) -> PermissionProvider:
    """Return the session's provider, resolved for its active clinic."""
    provider = await registry.provider_for(session)
    if provider.clinic_id != session.clinic_id:
        raise ClinicContextError("Permission session does not match the active clinic")
    return provider


async def get_api(
    session: SessionContext = Depends(get_session),
    registry: SessionRegistry = Depends(get_registry),
) -> PermissionsAPI:
    return registry.api_for(session.token)


async def require_clinic(session: SessionContext = Depends(get_session)) -> int:
    if session.clinic_id is None:
        raise ClinicContextError("Select a clinic first (X-Clinic-Id header)")
    return session.clinic_id


def _deny(provider: PermissionProvider, message: str):
    # A failed resolve still denies, but report why
    if provider.state is ProviderState.ERROR and provider.error is not None:
        raise provider.error
    raise PermissionDeniedError(message)


# ── Permission-based access control ─────────────────────────

def require_permission(*pairs: tuple[Module, Action]):
    """Dependency factory: restrict to sessions that hold ALL listed pairs.

    Usage:
        @router.put("/templates/{role}")
        async def save_template(
            provider: PermissionProvider = Depends(
                require_permission((Module.USERS, Action.EDIT))
            ),
        ):
            ...
    """
    perms = [Permission.of(module, action) for module, action in pairs]

    async def _check(provider: PermissionProvider = Depends(get_provider)) -> PermissionProvider:
        missing = [p.key for p in perms if not provider.has_permission(p.module, p.action)]
        if missing:
            _deny(provider, f"Missing permissions: {', '.join(missing)}")
        return provider

    return _check


async def require_clinic_manager(
    provider: PermissionProvider = Depends(get_provider),
) -> PermissionProvider:
    if provider.snapshot() is None or provider.role not in MANAGER_ROLES:
        _deny(provider, "Only clinic managers can access this feature")
    return provider
