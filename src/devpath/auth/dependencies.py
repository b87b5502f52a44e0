"""FastAPI authentication dependencies."""

from __future__ import annotations

import jwt
from fastapi import Depends, HTTPException, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from devpath.auth.jwt import verify_token
from devpath.auth.service import get_or_create_user
from devpath.database import get_session
from devpath.db.models import User

_bearer = HTTPBearer()


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Security(_bearer),
    db: AsyncSession = Depends(get_session),
) -> User:
    """
    Verify the bearer JWT and return the User for its subject.

    Raises 401 for invalid tokens and 403 for deactivated users.
    """
    try:
        payload = verify_token(credentials.credentials)
    except jwt.InvalidTokenError as e:
        raise HTTPException(status_code=401, detail=str(e)) from e

    user = await get_or_create_user(db, str(payload["sub"]), payload.get("name"))
    if not user.is_active:
        raise HTTPException(status_code=403, detail="Account is deactivated")
    return user
