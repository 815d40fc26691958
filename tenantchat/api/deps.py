"""FastAPI dependencies for identity resolution and database access.

Every request is resolved to exactly one ``SessionIdentity`` at this boundary;
services receive the identity and never look at credentials themselves.
"""

import uuid
from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import sessionmaker
from sqlmodel import select

from tenantchat.core.config import get_settings
from tenantchat.core.database import get_session, get_session_factory
from tenantchat.core.errors import PermissionDenied
from tenantchat.core.security import decode_jwt, hash_api_token
from tenantchat.models.api_token import ApiToken
from tenantchat.models.base import utcnow
from tenantchat.models.user import User, UserRole

bearer_scheme = HTTPBearer(auto_error=False)


class SessionIdentity:
    """Resolved (tenant, user) pair carried through a request."""

    __slots__ = ("tenant_id", "user_id", "user_role")

    is_anonymous = False

    def __init__(self, tenant_id: uuid.UUID, user_id: uuid.UUID, user_role: str) -> None:
        self.tenant_id = tenant_id
        self.user_id = user_id
        self.user_role = user_role

    def __repr__(self) -> str:
        return f"{type(self).__name__}(tenant_id={self.tenant_id}, user_id={self.user_id})"


class Authenticated(SessionIdentity):
    """Identity proven by a JWT or an API token."""

    __slots__ = ("token_id",)

    def __init__(
        self,
        tenant_id: uuid.UUID,
        user_id: uuid.UUID,
        user_role: str,
        token_id: uuid.UUID | None = None,
    ) -> None:
        super().__init__(tenant_id, user_id, user_role)
        self.token_id = token_id


class Anonymous(SessionIdentity):
    """No credentials: the fixed demo tenant/user."""

    __slots__ = ()

    is_anonymous = True

    def __init__(self, tenant_id: uuid.UUID, user_id: uuid.UUID) -> None:
        super().__init__(tenant_id, user_id, UserRole.GUEST)


async def _resolve_api_token(
    raw_token: str, session: AsyncSession
) -> Authenticated:
    """Look up an API token by its SHA-256 hash."""
    token_hash = hash_api_token(raw_token)
    stmt = select(ApiToken).where(
        ApiToken.token_hash == token_hash,
        ApiToken.is_active.is_(True),  # type: ignore[union-attr]
    )
    result = await session.execute(stmt)
    api_token = result.scalar_one_or_none()

    if api_token is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or revoked API token",
        )

    if api_token.expires_at and api_token.expires_at < utcnow():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="API token has expired",
        )

    user = await session.get(User, api_token.user_id)
    if user is None or not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token owner account is disabled",
        )

    api_token.last_used_at = utcnow()
    session.add(api_token)
    await session.commit()

    return Authenticated(
        tenant_id=api_token.tenant_id,
        user_id=api_token.user_id,
        user_role=user.role,
        token_id=api_token.id,
    )


def _resolve_jwt(token: str) -> Authenticated:
    """Decode a JWT and extract tenant_id + user_id."""
    try:
        payload = decode_jwt(token)
    except JWTError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired JWT",
        ) from exc

    try:
        return Authenticated(
            tenant_id=uuid.UUID(payload["tid"]),
            user_id=uuid.UUID(payload["sub"]),
            user_role=payload.get("role", UserRole.MEMBER),
        )
    except (KeyError, ValueError) as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Malformed JWT payload",
        ) from exc


async def get_identity(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
    session: Annotated[AsyncSession, Depends(get_session)],
) -> SessionIdentity:
    """Resolve the caller to a SessionIdentity.

    Supports two token types:
    - API tokens (opaque, ~43 chars from token_urlsafe(32))
    - JWTs (contain dots: header.payload.signature)

    Without credentials the request runs as ``Anonymous`` if the deployment
    allows it, otherwise it is rejected.
    """
    if credentials is None:
        settings = get_settings()
        if not settings.allow_anonymous:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Not authenticated",
                headers={"WWW-Authenticate": "Bearer"},
            )
        return Anonymous(settings.demo_tenant_id, settings.demo_user_id)

    raw = credentials.credentials
    if "." in raw:
        return _resolve_jwt(raw)
    return await _resolve_api_token(raw, session)


# Typed shorthand for use in route signatures
Identity = Annotated[SessionIdentity, Depends(get_identity)]
Session = Annotated[AsyncSession, Depends(get_session)]
SessionFactory = Annotated[sessionmaker, Depends(get_session_factory)]


ELEVATED_ROLES = {UserRole.OWNER, UserRole.ADMIN}


def require_elevated(identity: SessionIdentity, action: str) -> None:
    """Raise PermissionDenied unless the caller is a tenant owner or admin."""
    if identity.user_role not in ELEVATED_ROLES:
        raise PermissionDenied(f"Only tenant owners and admins can {action}")
