"""
FastAPI dependencies for authentication.

Produces the AuthContext every authorization check runs against. Identity
and organization come from the verified token only.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Annotated, Optional
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from app.features.users.auth import verify_jwt_token, SUPER_ADMIN_ORG_PLACEHOLDER


security = HTTPBearer()


@dataclass(frozen=True)
class AuthContext:
    """Authenticated identity and the organization the request acts in."""
    user_id: str
    organization_id: Optional[str]
    authenticated_at: datetime


def context_from_payload(payload: dict) -> AuthContext:
    user_id = payload.get("sub")
    if not user_id or not isinstance(user_id, str):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
        )

    organization_id = payload.get("orgId")
    if not isinstance(organization_id, str) or organization_id in ("", SUPER_ADMIN_ORG_PLACEHOLDER):
        organization_id = None

    issued_at = payload.get("iat")
    authenticated_at = (
        datetime.fromtimestamp(issued_at, tz=timezone.utc)
        if isinstance(issued_at, (int, float))
        else datetime.now(timezone.utc)
    )
    return AuthContext(user_id=user_id, organization_id=organization_id, authenticated_at=authenticated_at)


async def get_auth_context(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)],
) -> AuthContext:
    """
    Verify the bearer token and build the request's AuthContext.

    Usage:
        @router.get("/me")
        async def get_me(context: AuthContext = Depends(get_auth_context)):
            return context
    """
    payload = verify_jwt_token(credentials.credentials)
    return context_from_payload(payload)


def get_authorization_header(request) -> str:
    """
    Extract authorization header for rate limiting.
    Used with slowapi Limiter.
    """
    auth = request.headers.get("Authorization", "")
    return auth or "anonymous"
