"""JWT session token creation and decoding.

Token claims:
  - sub:        user ID
  - clinic_id:  active clinic (optional; the X-Clinic-Id header overrides it)
  - type:       "access"
  - exp:        expiry timestamp
"""

from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from clinic_access.config import settings

ALGORITHM = settings.jwt_algorithm


def create_access_token(
    user_id: str,
    clinic_id: int | None = None,
    expires_delta: timedelta | None = None,
) -> str:
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    )
    payload = {
        "sub": user_id,
        "type": "access",
        "exp": expire,
    }
    if clinic_id is not None:
        payload["clinic_id"] = clinic_id
    return jwt.encode(payload, settings.secret_key, algorithm=ALGORITHM)


def decode_token(token: str) -> dict:
    """Decode and validate a JWT. Returns empty dict on failure."""
    try:
        return jwt.decode(token, settings.secret_key, algorithms=[ALGORITHM])
    except JWTError:
        return {}
