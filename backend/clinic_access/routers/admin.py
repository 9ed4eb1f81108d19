"""Admin routes for role templates and per-user permissions.

Endpoints:
    GET   /api/admin/templates/{role}                          Role template (custom or factory)
    PUT   /api/admin/templates/{role}                          Save role template
    POST  /api/admin/templates/{role}/restore-defaults         Reset template to factory defaults
    GET   /api/admin/users/{user_id}/permissions               User role + explicit grants
    PUT   /api/admin/users/{user_id}/permissions               Save user role + explicit grants
    POST  /api/admin/users/{user_id}/permissions/copy          Copy grants from another user

Reads need users:view and writes need users:edit. Template writes and
copying also need a clinic manager, and only an owner (or super admin)
moves a member into or out of a super role. All routes act on the
session's active clinic.
"""

from fastapi import APIRouter, Depends, HTTPException, Query

from clinic_access.auth.deps import (
    get_api,
    get_cache,
    require_clinic,
    require_clinic_manager,
    require_permission,
)
from clinic_access.auth.permissions import ALL_PERMISSIONS, SUPER_ROLES, Action, Module, Role
from clinic_access.auth.resolver import is_super_user_or_owner
from clinic_access.middleware.exceptions import PermissionDeniedError
from clinic_access.schemas.permissions import (
    CopyPermissionsRequest,
    PermissionKeys,
    TemplateOut,
    UserPermissionsOut,
    UserPermissionsUpdate,
)
from clinic_access.services.permission_api import PermissionsAPI
from clinic_access.services.permission_copy import copy_permissions
from clinic_access.services.provider import PermissionProvider
from clinic_access.services.template_manager import TemplateManager
from clinic_access.services.user_editor import UserPermissionEditor
from clinic_access.utils.cache import QueryCache

router = APIRouter()

can_view_users = require_permission((Module.USERS, Action.VIEW))
can_edit_users = require_permission((Module.USERS, Action.EDIT))


def _template_out(manager: TemplateManager) -> TemplateOut:
    return TemplateOut(
        clinic_id=manager.clinic_id,
        role=manager.selected_role,
        editable=manager.is_editable,
        is_custom=manager.is_custom,
        permissions=sorted(p.key for p in manager.working_set),
    )


def _user_out(editor: UserPermissionEditor) -> UserPermissionsOut:
    return UserPermissionsOut(
        clinic_id=editor.clinic_id,
        user_id=editor.user_id,
        role=editor.role,
        permissions=sorted(p.key for p in editor.working_set),
        modules={m.value: on for m, on in editor.module_states().items()},
    )


# ── Role templates ───────────────────────────────────────────

@router.get("/templates/{role}", response_model=TemplateOut, dependencies=[Depends(can_view_users)])
async def get_template(
    role: Role,
    clinic_id: int = Depends(require_clinic),
    api: PermissionsAPI = Depends(get_api),
    cache: QueryCache = Depends(get_cache),
):
    manager = TemplateManager(api, cache, clinic_id)
    await manager.select_role(role)
    return _template_out(manager)


@router.put(
    "/templates/{role}",
    response_model=TemplateOut,
    dependencies=[Depends(can_edit_users), Depends(require_clinic_manager)],
)
async def save_template(
    role: Role,
    body: PermissionKeys,
    clinic_id: int = Depends(require_clinic),
    api: PermissionsAPI = Depends(get_api),
    cache: QueryCache = Depends(get_cache),
):
    manager = TemplateManager(api, cache, clinic_id)
    await manager.select_role(role)
    if not manager.is_editable:
        # Super roles always hold every permission; nothing to save
        return _template_out(manager)

    wanted = body.to_permissions()
    for perm in ALL_PERMISSIONS:
        manager.toggle_grant(perm.module, perm.action, perm in wanted)
    await manager.save()
    return _template_out(manager)


@router.post(
    "/templates/{role}/restore-defaults",
    response_model=TemplateOut,
    dependencies=[Depends(can_edit_users), Depends(require_clinic_manager)],
)
async def restore_template_defaults(
    role: Role,
    confirm: bool = Query(False),
    clinic_id: int = Depends(require_clinic),
    api: PermissionsAPI = Depends(get_api),
    cache: QueryCache = Depends(get_cache),
):
    if not confirm:
        raise HTTPException(
            status_code=400,
            detail="Restoring defaults discards the clinic's customisation; pass confirm=true",
        )
    manager = TemplateManager(api, cache, clinic_id)
    await manager.select_role(role)
    if manager.is_editable:
        manager.restore_defaults(confirmed=True)
        await manager.save()
    return _template_out(manager)


# ── Per-user permissions ─────────────────────────────────────

@router.get(
    "/users/{user_id}/permissions",
    response_model=UserPermissionsOut,
    dependencies=[Depends(can_view_users)],
)
async def get_user_permissions(
    user_id: str,
    clinic_id: int = Depends(require_clinic),
    api: PermissionsAPI = Depends(get_api),
    cache: QueryCache = Depends(get_cache),
):
    editor = UserPermissionEditor(api, cache, clinic_id, user_id)
    await editor.load()
    return _user_out(editor)


@router.put("/users/{user_id}/permissions", response_model=UserPermissionsOut)
async def save_user_permissions(
    user_id: str,
    body: UserPermissionsUpdate,
    caller: PermissionProvider = Depends(can_edit_users),
    clinic_id: int = Depends(require_clinic),
    api: PermissionsAPI = Depends(get_api),
    cache: QueryCache = Depends(get_cache),
):
    editor = UserPermissionEditor(api, cache, clinic_id, user_id)
    await editor.load()
    if body.role is not None and body.role != editor.role:
        if SUPER_ROLES & {body.role, editor.role} and not is_super_user_or_owner(caller.role):
            raise PermissionDeniedError(
                "Only an owner can grant or revoke the OWNER and SUPER_ADMIN roles"
            )
        editor.set_role(body.role)

    wanted = body.to_permissions()
    for perm in ALL_PERMISSIONS:
        editor.toggle_action(perm.module, perm.action, perm in wanted)
    await editor.save()
    return _user_out(editor)


@router.post(
    "/users/{user_id}/permissions/copy",
    dependencies=[Depends(require_clinic_manager)],
)
async def copy_user_permissions(
    user_id: str,
    body: CopyPermissionsRequest,
    clinic_id: int = Depends(require_clinic),
    api: PermissionsAPI = Depends(get_api),
    cache: QueryCache = Depends(get_cache),
):
    copied = await copy_permissions(api, cache, clinic_id, body.source_user_id, user_id)
    return {"copied": copied, "source_user_id": body.source_user_id, "target_user_id": user_id}
