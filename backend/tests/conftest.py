"""Pytest configuration and fixtures for clinic access tests.

The clinic backend is replaced by an in-memory fake served through
httpx.MockTransport; the app is exercised through httpx.ASGITransport.
"""

import asyncio
import json
import re

import httpx
import pytest
import pytest_asyncio

from clinic_access.auth.jwt import create_access_token
from clinic_access.main import create_app
from clinic_access.services.permission_api import PermissionsAPI
from clinic_access.utils.cache import QueryCache


# ── Fake clinic backend ──────────────────────────────────────────

_MEMBER_PATH = re.compile(
    r"^/api/clinics/(\d+)/users/([^/]+)/(access|role|permissions|permissions/batch)$"
)


def _row(key: str) -> dict:
    module, _, action = key.partition(":")
    return {"module": module, "action": action}


class Gate:
    """Holds matching requests until released."""

    def __init__(self):
        self.entered = asyncio.Event()
        self.release = asyncio.Event()


class FakeBackend:
    """In-memory clinic backend speaking the permission REST contract."""

    def __init__(self):
        self.members: dict[tuple[int, str], dict] = {}
        self.templates: dict[tuple[int, str], list[dict]] = {}
        self.requests: list[tuple[str, str]] = []
        self.failures: dict[tuple[str, str], int] = {}
        self.gates: dict[str, Gate] = {}
        self.down = False
        self._next_id = 1

    # ── Seeding / inspection ──

    def add_member(self, clinic_id: int, user_id: str, role: str, permissions=()):
        self.members[(clinic_id, user_id)] = {
            "id": self._next_id,
            "role": role,
            "permissions": [_row(k) for k in permissions],
        }
        self._next_id += 1

    def set_template(self, clinic_id: int, role: str, permissions):
        self.templates[(clinic_id, role)] = [_row(k) for k in permissions]

    def grants(self, clinic_id: int, user_id: str) -> set[str]:
        rows = self.members[(clinic_id, user_id)]["permissions"]
        return {f"{r['module']}:{r['action']}" for r in rows}

    def template(self, clinic_id: int, role: str) -> set[str] | None:
        rows = self.templates.get((clinic_id, role))
        if rows is None:
            return None
        return {f"{r['module']}:{r['action']}" for r in rows}

    def role(self, clinic_id: int, user_id: str) -> str:
        return self.members[(clinic_id, user_id)]["role"]

    def fail(self, method: str, suffix: str, status: int = 500):
        """Answer `method` requests whose path ends with `suffix` with an error."""
        self.failures[(method, suffix)] = status

    def gate(self, path_fragment: str) -> Gate:
        gate = Gate()
        self.gates[path_fragment] = gate
        return gate

    def count(self, method: str, suffix: str) -> int:
        return sum(1 for m, p in self.requests if m == method and p.endswith(suffix))

    # ── Transport handler ──

    async def handle(self, request: httpx.Request) -> httpx.Response:
        method, path = request.method, request.url.path
        self.requests.append((method, path))

        for fragment, gate in list(self.gates.items()):
            if fragment in path:
                gate.entered.set()
                await gate.release.wait()

        if self.down:
            raise httpx.ConnectError("backend unreachable", request=request)
        for (m, suffix), status in self.failures.items():
            if m == method and path.endswith(suffix):
                return httpx.Response(status, json={"message": "injected failure"})

        if path == "/api/health":
            return httpx.Response(200, json={"status": "ok"})
        if path == "/api/permission-templates":
            return self._templates(request)

        match = _MEMBER_PATH.match(path)
        if match is None:
            return httpx.Response(404, json={"message": "not found"})
        clinic_id, user_id, resource = int(match[1]), match[2], match[3]
        member = self.members.get((clinic_id, user_id))
        if member is None:
            return httpx.Response(404, json={"message": "not a member of this clinic"})

        if method == "GET" and resource == "access":
            return httpx.Response(200, json={
                "clinicUserId": member["id"],
                "role": member["role"],
                "permissions": list(member["permissions"]),
            })
        if method == "PATCH" and resource == "role":
            member["role"] = json.loads(request.content)["role"]
            return httpx.Response(200, json={"role": member["role"]})
        if method == "DELETE" and resource == "permissions":
            member["permissions"] = []
            return httpx.Response(204)
        if method == "POST" and resource == "permissions/batch":
            rows = json.loads(request.content)["permissions"]
            member["permissions"].extend(rows)
            return httpx.Response(201, json={"created": len(rows)})
        return httpx.Response(405, json={"message": "method not allowed"})

    def _templates(self, request: httpx.Request) -> httpx.Response:
        if request.method == "GET":
            key = (int(request.url.params["clinicId"]), request.url.params["role"])
            if key not in self.templates:
                return httpx.Response(404, json={"message": "no custom template"})
            return httpx.Response(200, json={
                "clinicId": key[0],
                "role": key[1],
                "permissions": self.templates[key],
            })
        body = json.loads(request.content)
        self.templates[(body["clinicId"], body["role"])] = body["permissions"]
        return httpx.Response(200, json=body)


# ── Backend / client fixtures ────────────────────────────────────

@pytest.fixture
def backend() -> FakeBackend:
    """Clinic 1 with one member per common role; staff-1 is a manager in clinic 2."""
    fake = FakeBackend()
    fake.add_member(1, "owner-1", "OWNER")
    fake.add_member(1, "mgr-1", "MANAGER")
    fake.add_member(1, "staff-1", "STAFF")
    fake.add_member(1, "recep-1", "RECEPTIONIST")
    fake.add_member(2, "staff-1", "MANAGER")
    return fake


@pytest_asyncio.fixture
async def http_client(backend: FakeBackend):
    async with httpx.AsyncClient(
        transport=httpx.MockTransport(backend.handle),
        base_url="http://backend.test",
    ) as client:
        yield client


@pytest.fixture
def api(http_client: httpx.AsyncClient) -> PermissionsAPI:
    return PermissionsAPI(http_client, token="test-token")


@pytest.fixture
def cache() -> QueryCache:
    return QueryCache(ttl=60)


# ── App fixtures ─────────────────────────────────────────────────

@pytest.fixture
def app(http_client: httpx.AsyncClient, cache: QueryCache):
    return create_app(client=http_client, cache=cache)


@pytest_asyncio.fixture
async def client(app):
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client


@pytest.fixture
def auth_headers():
    """Build Authorization headers carrying a session token for a user."""

    def _headers(user_id: str, clinic_id: int | None = 1) -> dict:
        token = create_access_token(user_id, clinic_id=clinic_id)
        return {"Authorization": f"Bearer {token}"}

    return _headers


# ── Test Markers ─────────────────────────────────────────────────

def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "cache: Query cache and invalidation tests")
    config.addinivalue_line("markers", "integration: Integration tests")
