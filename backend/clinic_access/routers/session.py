"""Session permission routes, consumed by the front end to gate its UI.

Endpoints:
    GET   /api/session/permissions    Resolved permissions of the current session
    POST  /api/session/refresh        Re-resolve (after an out-of-band change)
    POST  /api/session/logout         Drop the session's provider
"""

from fastapi import APIRouter, Depends, Response, status

from clinic_access.auth.deps import get_provider, get_registry, get_session
from clinic_access.auth.permissions import CATALOG, MODULE_LABELS
from clinic_access.schemas.permissions import ModuleAccess, SessionPermissionsOut
from clinic_access.services.provider import PermissionProvider
from clinic_access.services.sessions import SessionContext, SessionRegistry

router = APIRouter()


def _session_out(provider: PermissionProvider) -> SessionPermissionsOut:
    snapshot = provider.snapshot()
    modules = [
        ModuleAccess(
            module=module,
            label=MODULE_LABELS[module][0],
            actions=provider.allowed_actions(module),
        )
        for module in CATALOG
    ]
    return SessionPermissionsOut(
        user_id=provider.user_id,
        clinic_id=provider.clinic_id,
        role=provider.role,
        is_loading=provider.is_loading,
        error=str(provider.error) if provider.error else None,
        permissions=snapshot.as_keys() if snapshot else [],
        modules=[m for m in modules if m.actions],
    )


@router.get("/permissions", response_model=SessionPermissionsOut)
async def get_session_permissions(
    provider: PermissionProvider = Depends(get_provider),
):
    return _session_out(provider)


@router.post("/refresh", response_model=SessionPermissionsOut)
async def refresh_session_permissions(
    provider: PermissionProvider = Depends(get_provider),
):
    await provider.refresh()
    return _session_out(provider)


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(
    session: SessionContext = Depends(get_session),
    registry: SessionRegistry = Depends(get_registry),
):
    registry.logout(session.token)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
