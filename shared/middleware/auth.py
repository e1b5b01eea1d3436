"""
shared/middleware/auth.py
Bearer-token dependencies: who is calling, and may they call this route.
Revoked token ids are looked up in Redis on every request.
"""

import uuid
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.redis_client import RedisChannels, get_redis
from shared.models.models import User, UserRole
from shared.utils.security import verify_access_token

bearer_scheme = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


class TokenData:
    def __init__(self, claims: dict):
        self.user_id: str = claims["sub"]
        self.role: UserRole = UserRole(claims["role"])
        self.email: str = claims["email"]
        self.jti: str = claims["jti"]


async def get_token_data(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    redis=Depends(get_redis),
) -> TokenData:
    if credentials is None:
        raise _unauthorized("Authentication required")
    try:
        token = TokenData(verify_access_token(credentials.credentials))
    except (JWTError, ValueError):
        raise _unauthorized("Invalid or expired token")

    if await RedisChannels(redis).is_token_revoked(token.jti):
        raise _unauthorized("Token has been revoked")
    return token


async def get_current_user(
    token: TokenData = Depends(get_token_data),
    db: AsyncSession = Depends(get_db),
) -> User:
    try:
        user_id = uuid.UUID(token.user_id)
    except ValueError:
        raise _unauthorized("Invalid token subject")

    user = await db.get(User, user_id)
    if user is None:
        raise _unauthorized("User not found")
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account is deactivated")
    return user


class RoleRequired:
    """Route guard: the current user must hold one of `roles`."""

    def __init__(self, *roles: UserRole):
        self.roles = set(roles)

    async def __call__(self, current_user: User = Depends(get_current_user)) -> User:
        if current_user.role not in self.roles:
            allowed = ", ".join(sorted(r.value for r in self.roles))
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=f"Requires role: {allowed}")
        return current_user


require_professional = RoleRequired(UserRole.PROFESSIONAL, UserRole.ADMIN)
