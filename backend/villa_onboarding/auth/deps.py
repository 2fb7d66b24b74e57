"""FastAPI dependencies for identity.

The onboarding engine only needs to know who is acting, for session
tracking and the `skipped_by` column of the skip log:
  get_current_user_id  → decode the bearer JWT, return its `sub`
"""

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer

from villa_onboarding.auth.jwt import decode_token

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")


async def get_current_user_id(token: str = Depends(oauth2_scheme)) -> str:
    payload = decode_token(token)
    user_id: str | None = payload.get("sub")
    if not user_id or payload.get("type") != "access":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user_id
