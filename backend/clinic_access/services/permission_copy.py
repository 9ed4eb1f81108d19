"""Copy one clinic member's explicit grants onto another member."""

import logging

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


async def copy_permissions(
    api: PermissionsAPI,
    cache: QueryCache,
    clinic_id: int,
    source_user_id: str,
    target_user_id: str,
) -> int:
    """Replace the target's explicit grants with the source's.

    Roles are left untouched. Returns the number of grants copied.
    """
    if source_user_id == target_user_id:
        raise InvalidPermissionError("Source and target user must differ")

    source = await api.get_access(clinic_id, source_user_id)
    grants = to_permissions(source.permissions)

    try:
        await api.replace_grants(clinic_id, target_user_id, grants)
    except GrantsClearedError as e:
        await cache.invalidate(access_key(clinic_id, target_user_id))
        raise PermissionSaveError(
            saved=[], failed=["grants"], errors={"grants": e}, cleared=["grants"]
        ) from e
    except BackendError as e:
        raise PermissionSaveError(saved=[], failed=["grants"], errors={"grants": e}) from e

    logger.info(
        f"Copied {len(grants)} permissions from user {source_user_id} "
        f"to user {target_user_id} in clinic {clinic_id}"
    )
    await cache.invalidate(access_key(clinic_id, target_user_id))
    return len(grants)
