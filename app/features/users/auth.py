"""
Identity token verification.

Tokens are issued by the authentication service. We verify the signature and
read the user id (`sub`), the selected organization (`orgId`) and the time
of authentication (`iat`); credentials are never checked here.
"""
import jwt
from typing import Optional
from datetime import datetime, timedelta, timezone
from fastapi import HTTPException, status

from app.core import config
from app.utils import get_logger


log = get_logger(__name__)

# Organization placeholder used by platform-level super-admin tokens
SUPER_ADMIN_ORG_PLACEHOLDER = "super-admin"


def _require_secret() -> str:
    if not config.JWT_SECRET:
        log.error("JWT_SECRET is not configured; rejecting authenticated request")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Authentication is not configured",
        )
    return config.JWT_SECRET


def verify_jwt_token(token: str) -> dict:
    """
    Verify an identity token and return its payload.

    Args:
        token: JWT token from Authorization header

    Returns:
        Decoded JWT payload

    Raises:
        HTTPException: If token is invalid or expired
    """
    secret = _require_secret()
    try:
        return jwt.decode(
            token,
            secret,
            algorithms=[config.JWT_ALGORITHM],
            options={"require": ["sub", "iat"]},
        )
    except jwt.ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired",
            headers={"WWW-Authenticate": "Bearer"},
        )
    except jwt.InvalidTokenError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"},
        )


def create_access_token(
    user_id: str,
    organization_id: Optional[str] = None,
    expires_in: timedelta = timedelta(hours=1),
) -> str:
    """
    Issue a signed identity token.

    Used by the seed tooling and tests; production tokens come from the
    authentication service.
    """
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "orgId": organization_id,
        "iat": now,
        "exp": now + expires_in,
    }
    return jwt.encode(payload, _require_secret(), algorithm=config.JWT_ALGORITHM)
