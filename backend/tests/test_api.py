"""HTTP tests for the session, admin and health routes."""

import asyncio

import pytest

from clinic_access.auth.permissions import ALL_PERMISSIONS, ROLE_DEFAULTS, Role


@pytest.mark.integration
@pytest.mark.asyncio
class TestSessionAuth:

    async def test_missing_token(self, client):
        response = await client.get("/api/session/permissions")

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "HTTP_401"

    async def test_invalid_token(self, client):
        response = await client.get(
            "/api/session/permissions",
            headers={"Authorization": "Bearer not-a-jwt"},
        )
        assert response.status_code == 401
        assert response.headers["www-authenticate"] == "Bearer"

    async def test_invalid_clinic_header(self, client, auth_headers):
        response = await client.get(
            "/api/session/permissions",
            headers={**auth_headers("staff-1"), "X-Clinic-Id": "abc"},
        )
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_CLINIC_ID"

    async def test_clinic_header_overrides_token_claim(self, client, auth_headers):
        response = await client.get(
            "/api/session/permissions",
            headers={**auth_headers("staff-1", clinic_id=1), "X-Clinic-Id": "2"},
        )
        data = response.json()
        assert data["clinic_id"] == 2
        assert data["role"] == "MANAGER"


@pytest.mark.integration
@pytest.mark.asyncio
class TestClinicIsolation:

    async def test_write_is_authorized_by_its_own_clinic(self, client, auth_headers, backend):
        # staff-1 is STAFF in clinic 1 and MANAGER in clinic 2
        gate = backend.gate("/api/clinics/1/users/staff-1/access")
        headers = auth_headers("staff-1", clinic_id=1)

        write = asyncio.create_task(client.put(
            "/api/admin/templates/STAFF",
            json={"permissions": ["users:edit", "financial:delete"]},
            headers=headers,
        ))
        await gate.entered.wait()

        other = await client.get(
            "/api/session/permissions", headers={**headers, "X-Clinic-Id": "2"}
        )
        assert other.json()["role"] == "MANAGER"

        gate.release.set()
        response = await write
        assert response.status_code == 403
        assert backend.template(1, "STAFF") is None

    async def test_switching_back_keeps_each_clinic(self, client, auth_headers, backend):
        headers = auth_headers("staff-1", clinic_id=1)
        await client.get("/api/session/permissions", headers=headers)
        await client.get("/api/session/permissions", headers={**headers, "X-Clinic-Id": "2"})
        fetches = backend.count("GET", "/access")

        data = (await client.get("/api/session/permissions", headers=headers)).json()
        assert data["clinic_id"] == 1
        assert data["role"] == "STAFF"
        assert backend.count("GET", "/access") == fetches


@pytest.mark.integration
@pytest.mark.asyncio
class TestSessionPermissions:

    async def test_staff_permissions(self, client, auth_headers):
        response = await client.get("/api/session/permissions", headers=auth_headers("staff-1"))

        assert response.status_code == 200
        data = response.json()
        assert data["role"] == "STAFF"
        assert data["is_loading"] is False
        assert data["error"] is None
        assert data["permissions"] == sorted(p.key for p in ROLE_DEFAULTS[Role.STAFF])
        modules = {m["module"]: m["actions"] for m in data["modules"]}
        assert modules["attendance"] == ["view", "create"]
        assert "financial" not in modules

    async def test_owner_sees_every_module(self, client, auth_headers):
        response = await client.get("/api/session/permissions", headers=auth_headers("owner-1"))

        data = response.json()
        assert len(data["permissions"]) == len(ALL_PERMISSIONS)
        assert len(data["modules"]) == 12

    async def test_no_clinic_selected(self, client, auth_headers):
        response = await client.get(
            "/api/session/permissions", headers=auth_headers("staff-1", clinic_id=None)
        )
        data = response.json()
        assert data["clinic_id"] is None
        assert data["role"] is None
        assert data["permissions"] == []

    async def test_backend_failure_fails_closed(self, client, auth_headers, backend):
        backend.down = True
        response = await client.get("/api/session/permissions", headers=auth_headers("staff-1"))

        data = response.json()
        assert data["permissions"] == []
        assert data["error"] is not None

    async def test_refresh_picks_up_backend_change(self, client, auth_headers, backend):
        headers = auth_headers("staff-1")
        await client.get("/api/session/permissions", headers=headers)
        backend.add_member(1, "staff-1", "STAFF", permissions=["financial:view"])

        response = await client.post("/api/session/refresh", headers=headers)
        assert "financial:view" in response.json()["permissions"]

    async def test_logout(self, client, auth_headers, app):
        headers = auth_headers("staff-1")
        await client.get("/api/session/permissions", headers=headers)
        assert len(app.state.sessions) == 1

        response = await client.post("/api/session/logout", headers=headers)
        assert response.status_code == 204
        assert len(app.state.sessions) == 0


@pytest.mark.integration
@pytest.mark.asyncio
class TestTemplateRoutes:

    async def test_requires_users_view(self, client, auth_headers):
        response = await client.get(
            "/api/admin/templates/STAFF", headers=auth_headers("recep-1")
        )
        assert response.status_code == 403
        assert response.json()["error"]["code"] == "PERMISSION_DENIED"

    async def test_get_defaults(self, client, auth_headers):
        response = await client.get("/api/admin/templates/STAFF", headers=auth_headers("mgr-1"))

        assert response.status_code == 200
        data = response.json()
        assert data["is_custom"] is False
        assert data["editable"] is True
        assert set(data["permissions"]) == {p.key for p in ROLE_DEFAULTS[Role.STAFF]}

    async def test_save_template_reaches_other_sessions(self, client, auth_headers, backend):
        staff = auth_headers("staff-1")
        before = await client.get("/api/session/permissions", headers=staff)
        assert "clients:view" in before.json()["permissions"]

        response = await client.put(
            "/api/admin/templates/STAFF",
            json={"permissions": ["dashboard:view", "tasks:view"]},
            headers=auth_headers("mgr-1"),
        )
        assert response.status_code == 200
        assert response.json()["is_custom"] is True
        assert backend.template(1, "STAFF") == {"dashboard:view", "tasks:view"}

        after = await client.get("/api/session/permissions", headers=staff)
        assert after.json()["permissions"] == ["dashboard:view", "tasks:view"]

    async def test_owner_template_is_not_saved(self, client, auth_headers, backend):
        response = await client.put(
            "/api/admin/templates/OWNER",
            json={"permissions": []},
            headers=auth_headers("owner-1"),
        )
        data = response.json()
        assert data["editable"] is False
        assert len(data["permissions"]) == len(ALL_PERMISSIONS)
        assert backend.count("POST", "/api/permission-templates") == 0

    async def test_invalid_permission_key(self, client, auth_headers):
        response = await client.put(
            "/api/admin/templates/STAFF",
            json={"permissions": ["dashboard:delete"]},
            headers=auth_headers("mgr-1"),
        )
        assert response.status_code == 422
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    async def test_restore_defaults_needs_confirm(self, client, auth_headers, backend):
        backend.set_template(1, "STAFF", ["tasks:view"])
        headers = auth_headers("mgr-1")

        response = await client.post("/api/admin/templates/STAFF/restore-defaults", headers=headers)
        assert response.status_code == 400
        assert backend.template(1, "STAFF") == {"tasks:view"}

        response = await client.post(
            "/api/admin/templates/STAFF/restore-defaults?confirm=true", headers=headers
        )
        assert response.status_code == 200
        assert backend.template(1, "STAFF") == {p.key for p in ROLE_DEFAULTS[Role.STAFF]}

    async def test_template_writes_need_clinic_manager(self, client, auth_headers, backend):
        backend.add_member(1, "fin-1", "FINANCIAL", permissions=["users:view", "users:edit"])
        headers = auth_headers("fin-1")

        response = await client.get("/api/admin/templates/FINANCIAL", headers=headers)
        assert response.status_code == 200

        response = await client.put(
            "/api/admin/templates/FINANCIAL",
            json={"permissions": ["settings:edit", "users:delete"]},
            headers=headers,
        )
        assert response.status_code == 403

        response = await client.post(
            "/api/admin/templates/FINANCIAL/restore-defaults?confirm=true", headers=headers
        )
        assert response.status_code == 403
        assert backend.template(1, "FINANCIAL") is None

    async def test_save_failure(self, client, auth_headers, backend):
        backend.fail("POST", "/api/permission-templates")
        response = await client.put(
            "/api/admin/templates/STAFF",
            json={"permissions": ["tasks:view"]},
            headers=auth_headers("mgr-1"),
        )
        assert response.status_code == 502
        assert response.json()["error"]["code"] == "SAVE_FAILED"


@pytest.mark.integration
@pytest.mark.asyncio
class TestUserPermissionRoutes:

    async def test_get_user_permissions(self, client, auth_headers, backend):
        backend.add_member(1, "staff-2", "STAFF", permissions=["crm:view"])

        response = await client.get(
            "/api/admin/users/staff-2/permissions", headers=auth_headers("mgr-1")
        )
        data = response.json()
        assert data["role"] == "STAFF"
        assert data["permissions"] == ["crm:view"]
        assert data["modules"]["crm"] is True
        assert data["modules"]["financial"] is False

    async def test_save_reaches_target_session(self, client, auth_headers, backend):
        target = auth_headers("staff-1")
        await client.get("/api/session/permissions", headers=target)

        response = await client.put(
            "/api/admin/users/staff-1/permissions",
            json={"role": "RECEPTIONIST", "permissions": ["financial:view"]},
            headers=auth_headers("mgr-1"),
        )
        assert response.status_code == 200
        assert backend.role(1, "staff-1") == "RECEPTIONIST"

        data = (await client.get("/api/session/permissions", headers=target)).json()
        assert data["role"] == "RECEPTIONIST"
        assert "financial:view" in data["permissions"]
        assert "appointments:delete" in data["permissions"]

    async def test_partial_save_is_502(self, client, auth_headers, backend):
        backend.fail("POST", "/permissions/batch")
        response = await client.put(
            "/api/admin/users/staff-1/permissions",
            json={"role": "RECEPTIONIST", "permissions": ["financial:view"]},
            headers=auth_headers("mgr-1"),
        )
        assert response.status_code == 502
        error = response.json()["error"]
        assert error["code"] == "PARTIAL_SAVE"
        assert error["details"]["saved"] == ["role"]
        assert error["details"]["failed"] == ["grants"]
        assert error["details"]["cleared"] == ["grants"]

    async def test_manager_cannot_grant_owner(self, client, auth_headers, backend):
        response = await client.put(
            "/api/admin/users/staff-1/permissions",
            json={"role": "OWNER", "permissions": []},
            headers=auth_headers("mgr-1"),
        )
        assert response.status_code == 403
        assert backend.role(1, "staff-1") == "STAFF"

    async def test_manager_cannot_demote_owner(self, client, auth_headers, backend):
        response = await client.put(
            "/api/admin/users/owner-1/permissions",
            json={"role": "STAFF", "permissions": []},
            headers=auth_headers("mgr-1"),
        )
        assert response.status_code == 403
        assert backend.role(1, "owner-1") == "OWNER"

    async def test_owner_can_grant_owner(self, client, auth_headers, backend):
        response = await client.put(
            "/api/admin/users/mgr-1/permissions",
            json={"role": "OWNER", "permissions": []},
            headers=auth_headers("owner-1"),
        )
        assert response.status_code == 200
        assert backend.role(1, "mgr-1") == "OWNER"

    async def test_staff_cannot_edit(self, client, auth_headers):
        response = await client.put(
            "/api/admin/users/recep-1/permissions",
            json={"permissions": []},
            headers=auth_headers("staff-1"),
        )
        assert response.status_code == 403

    async def test_backend_failure_on_gate_is_502(self, client, auth_headers, backend):
        backend.down = True
        response = await client.get(
            "/api/admin/users/staff-1/permissions", headers=auth_headers("mgr-1")
        )
        assert response.status_code == 502
        assert response.json()["error"]["code"] == "BACKEND_ERROR"

    async def test_copy(self, client, auth_headers, backend):
        backend.add_member(1, "staff-2", "STAFF", permissions=["crm:view"])

        response = await client.post(
            "/api/admin/users/recep-1/permissions/copy",
            json={"source_user_id": "staff-2"},
            headers=auth_headers("mgr-1"),
        )
        assert response.json() == {
            "copied": 1,
            "source_user_id": "staff-2",
            "target_user_id": "recep-1",
        }
        assert backend.grants(1, "recep-1") == {"crm:view"}

    async def test_copy_needs_manager(self, client, auth_headers, backend):
        backend.add_member(1, "fin-1", "FINANCIAL", permissions=["users:view", "users:edit"])

        response = await client.post(
            "/api/admin/users/recep-1/permissions/copy",
            json={"source_user_id": "staff-1"},
            headers=auth_headers("fin-1"),
        )
        assert response.status_code == 403


@pytest.mark.integration
@pytest.mark.asyncio
class TestHealth:

    async def test_health(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json()["service"] == "clinic-access"

    async def test_ready_without_bus(self, client):
        response = await client.get("/health/ready")

        assert response.status_code == 200
        assert response.json()["checks"] == {
            "service": "ok",
            "backend": "ok",
            "redis": "disabled",
        }

    async def test_not_ready_when_backend_down(self, client, backend):
        backend.down = True
        response = await client.get("/health/ready")

        assert response.status_code == 503
        assert response.json()["checks"]["backend"] == "error: unreachable"
