"""Request-scoped session context.

Key components:
  - _session_ctx           ContextVar holding the caller's SessionContext
  - set / get / clear helpers for the ContextVar
  - parse_clinic_id()      validates the active clinic identifier
"""

from contextvars import ContextVar

from fastapi import HTTPException, status

from clinic_access.services.sessions import SessionContext

# ── Request-scoped session context ──────────────────────────

_session_ctx: ContextVar[SessionContext | None] = ContextVar("_session_ctx", default=None)


def set_current_session(session: SessionContext) -> None:
    _session_ctx.set(session)


def get_current_session() -> SessionContext:
    """Return the current session or raise 401 if unauthenticated."""
    session = _session_ctx.get()
    if session is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return session


def clear_session_context() -> None:
    _session_ctx.set(None)


# ── Validation ──────────────────────────────────────────────

def parse_clinic_id(value) -> int | None:
    """Accept a positive integer (or its string form); None passes through."""
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValueError(f"Invalid clinic id: {value!r}")
    try:
        clinic_id = int(value)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid clinic id: {value!r}") from None
    if clinic_id <= 0:
        raise ValueError(f"Invalid clinic id: {value!r}")
    return clinic_id
