"""JWT decoding for tokens issued by the identity service.

Token claims consumed here:
  - sub:   user ID
  - type:  "access" (refresh tokens are rejected)
  - exp:   expiry timestamp
"""

from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from villa_onboarding.config import settings

ALGORITHM = settings.jwt_algorithm


def create_access_token(user_id: str, expires_delta: timedelta | None = None) -> str:
    """Mint an access token (local development and tests)."""
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=30))
    payload = {"sub": user_id, "type": "access", "exp": expire}
    return jwt.encode(payload, settings.secret_key, algorithm=ALGORITHM)


def decode_token(token: str) -> dict:
    """Decode and validate a JWT. Returns empty dict on failure."""
    try:
        return jwt.decode(token, settings.secret_key, algorithms=[ALGORITHM])
    except JWTError:
        return {}
