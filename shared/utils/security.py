"""
shared/utils/security.py
Bearer token signing and verification (python-jose, HS256 by default).
Tokens are issued by the identity service; this API only needs to read
them, plus a signer for internal tools and tests.
"""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

from jose import JWTError, jwt

from config.settings import settings

TOKEN_TYPE = "access"
REQUIRED_CLAIMS = ("sub", "role", "email", "jti")


def create_access_token(
    user_id: str,
    role: str,
    email: str,
    expires_in: Optional[timedelta] = None,
) -> Tuple[str, str]:
    """Sign an access token for a marketplace account. Returns (token, jti)."""
    jti = uuid.uuid4().hex
    issued_at = datetime.now(timezone.utc)
    lifetime = expires_in if expires_in is not None else timedelta(
        minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES
    )
    claims = {
        "sub": str(user_id),
        "role": role,
        "email": email,
        "jti": jti,
        "type": TOKEN_TYPE,
        "iat": issued_at,
        "exp": issued_at + lifetime,
    }
    return jwt.encode(claims, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM), jti


def verify_access_token(token: str) -> dict:
    """Decoded claims of a valid access token. Raises JWTError otherwise."""
    claims = jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    if claims.get("type") != TOKEN_TYPE:
        raise JWTError("Not an access token")
    missing = [name for name in REQUIRED_CLAIMS if not claims.get(name)]
    if missing:
        raise JWTError(f"Token is missing claims: {', '.join(missing)}")
    return claims
