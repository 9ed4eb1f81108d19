"""HTTP client for the clinic backend's permission endpoints.

Endpoints:
    GET    /api/clinics/{clinic_id}/users/{user_id}/access             Role + explicit grants
    PATCH  /api/clinics/{clinic_id}/users/{user_id}/role               Change role in clinic
    DELETE /api/clinics/{clinic_id}/users/{user_id}/permissions        Drop all explicit grants
    POST   /api/clinics/{clinic_id}/users/{user_id}/permissions/batch  Create explicit grants
    GET    /api/permission-templates?clinicId=&role=                   Role template (404 = none)
    POST   /api/permission-templates                                   Upsert role template

Every failure (transport or non-2xx) is raised as BackendError.
"""

import logging
from collections.abc import Iterable

import httpx

from clinic_access.auth.permissions import Permission, Role
from clinic_access.middleware.exceptions import BackendError, GrantsClearedError
from clinic_access.schemas.permissions import (
    AccessOut,
    PermissionBatch,
    RoleTemplate,
    RoleUpdate,
    to_items,
)

logger = logging.getLogger(__name__)


def _detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(body, dict):
        return str(body.get("message") or body.get("detail") or body)
    return str(body)


class PermissionsAPI:
    """Backend calls made on behalf of one session (its bearer token)."""

    def __init__(self, client: httpx.AsyncClient, token: str | None = None):
        self._client = client
        self._token = token

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._token}"} if self._token else {}

    async def _request(
        self,
        method: str,
        url: str,
        *,
        json: dict | None = None,
        params: dict | None = None,
        allow_404: bool = False,
    ) -> httpx.Response | None:
        try:
            response = await self._client.request(
                method, url, json=json, params=params, headers=self._headers()
            )
        except httpx.HTTPError as e:
            logger.warning(f"Backend request {method} {url} failed: {e}")
            raise BackendError(f"{method} {url} failed: {e}") from e

        if allow_404 and response.status_code == 404:
            return None
        if response.is_error:
            logger.warning(f"Backend request {method} {url} returned {response.status_code}")
            raise BackendError(
                f"{method} {url} returned {response.status_code}: {_detail(response)}",
                upstream_status=response.status_code,
            )
        return response

    # ── Reads ────────────────────────────────────────────────

    async def get_access(self, clinic_id: int, user_id: str) -> AccessOut:
        response = await self._request("GET", f"/api/clinics/{clinic_id}/users/{user_id}/access")
        try:
            return AccessOut.model_validate(response.json())
        except ValueError as e:
            raise BackendError(f"Malformed access payload for user {user_id}: {e}") from e

    async def get_template(self, clinic_id: int, role: Role) -> RoleTemplate | None:
        """Return the clinic's custom template for `role`, or None if it has none."""
        response = await self._request(
            "GET",
            "/api/permission-templates",
            params={"clinicId": clinic_id, "role": role.value},
            allow_404=True,
        )
        if response is None:
            return None
        try:
            return RoleTemplate.model_validate(response.json())
        except ValueError as e:
            raise BackendError(f"Malformed template payload for {role.value}: {e}") from e

    async def ping(self) -> bool:
        try:
            response = await self._client.get("/api/health", headers=self._headers())
        except httpx.HTTPError:
            return False
        return response.is_success

    # ── Writes ───────────────────────────────────────────────

    async def update_role(self, clinic_id: int, user_id: str, role: Role) -> None:
        await self._request(
            "PATCH",
            f"/api/clinics/{clinic_id}/users/{user_id}/role",
            json=RoleUpdate(role=role).model_dump(mode="json", by_alias=True),
        )

    async def delete_grants(self, clinic_id: int, user_id: str) -> None:
        await self._request("DELETE", f"/api/clinics/{clinic_id}/users/{user_id}/permissions")

    async def create_grants(
        self, clinic_id: int, user_id: str, permissions: Iterable[Permission]
    ) -> None:
        body = PermissionBatch(permissions=to_items(permissions))
        await self._request(
            "POST",
            f"/api/clinics/{clinic_id}/users/{user_id}/permissions/batch",
            json=body.model_dump(mode="json", by_alias=True),
        )

    async def replace_grants(
        self, clinic_id: int, user_id: str, permissions: Iterable[Permission]
    ) -> None:
        """Delete every explicit grant, then insert the new set.

        Not atomic: if the insert fails the user is left with no explicit
        grants until the next successful replace, and GrantsClearedError is
        raised instead of a plain BackendError.
        """
        permissions = frozenset(permissions)
        await self.delete_grants(clinic_id, user_id)
        if not permissions:
            return
        try:
            await self.create_grants(clinic_id, user_id, permissions)
        except BackendError as e:
            raise GrantsClearedError(
                f"Grants of user {user_id} were deleted but not re-created: {e.message}",
                upstream_status=e.upstream_status,
            ) from e

    async def upsert_template(
        self, clinic_id: int, role: Role, permissions: Iterable[Permission]
    ) -> None:
        body = RoleTemplate(clinic_id=clinic_id, role=role, permissions=to_items(permissions))
        await self._request(
            "POST",
            "/api/permission-templates",
            json=body.model_dump(mode="json", by_alias=True),
        )
