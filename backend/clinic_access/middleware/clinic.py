"""Clinic middleware: resolves the session from the JWT on every request.

Flow:
  1. Extract Bearer token from Authorization header
  2. Decode JWT → `sub` (user) and optional `clinic_id` claim
  3. Let the X-Clinic-Id header override the clinic (clinic switcher)
  4. Set the ContextVar so dependencies (get_provider, etc.) can read it
  5. After the response, clear the ContextVar

Routes that don't need a session (health, docs) never call
get_current_session(), so having no context is fine for them.
"""

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from clinic_access.auth.jwt import decode_token
from clinic_access.clinic_context import (
    clear_session_context,
    parse_clinic_id,
    set_current_session,
)
from clinic_access.middleware.exceptions import create_error_response
from clinic_access.services.sessions import SessionContext

CLINIC_HEADER = "x-clinic-id"

# Routes that never require auth; don't reject expired tokens here
_PUBLIC_PREFIXES = ("/health", "/docs", "/openapi.json")


class ClinicContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        auth_header = request.headers.get("authorization", "")
        path = request.url.path
        is_public = any(path.startswith(p) for p in _PUBLIC_PREFIXES)

        clear_session_context()
        if auth_header.startswith("Bearer "):
            token = auth_header[7:]
            payload = decode_token(token)

            if not payload.get("sub") or payload.get("type") != "access":
                if not is_public:
                    return JSONResponse(
                        status_code=401,
                        content={"error": {"code": "HTTP_401", "message": "Token expired or invalid"}},
                        headers={"WWW-Authenticate": "Bearer"},
                    )
            else:
                try:
                    clinic_id = parse_clinic_id(
                        request.headers.get(CLINIC_HEADER, payload.get("clinic_id"))
                    )
                except ValueError as e:
                    return create_error_response(
                        status_code=400,
                        message=str(e),
                        error_code="INVALID_CLINIC_ID",
                    )
                set_current_session(
                    SessionContext(
                        token=token,
                        user_id=str(payload["sub"]),
                        clinic_id=clinic_id,
                        expires_at=payload.get("exp"),
                    )
                )

        try:
            response = await call_next(request)
        finally:
            clear_session_context()

        return response
