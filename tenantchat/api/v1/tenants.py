"""Tenant registration (bootstrap) and tenant settings endpoints."""

import json

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel, EmailStr, Field
from sqlmodel import select

from tenantchat.api.deps import Identity, Session, require_elevated
from tenantchat.core.security import generate_api_token, hash_api_token
from tenantchat.models.api_token import ApiToken
from tenantchat.models.base import load_json_object, utcnow
from tenantchat.models.tenant import Tenant, TenantRead
from tenantchat.models.user import User, UserRead, UserRole
from tenantchat.services.config_resolver import load_active_tenant

router = APIRouter(prefix="/tenants", tags=["tenants"])


# ── Request / response schemas ────────────────────────────────

class TenantBootstrapRequest(BaseModel):
    """Everything needed to create a new tenant + owner in one call."""
    tenant_name: str = Field(max_length=255)
    tenant_slug: str = Field(max_length=100, pattern=r"^[a-z0-9\-]+$")
    owner_email: EmailStr
    owner_display_name: str = Field(default="", max_length=255)
    llm_model: str | None = Field(default=None, max_length=100)
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    max_tokens: int | None = Field(default=None, ge=1, le=128000)
    system_prompt: str | None = None


class TenantBootstrapResponse(BaseModel):
    tenant: TenantRead
    owner: UserRead
    api_token: str = Field(description="Shown once; store it securely")
    token_prefix: str


class TenantSettingsUpdate(BaseModel):
    llm_model: str | None = Field(default=None, max_length=100)
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    max_tokens: int | None = Field(default=None, ge=1, le=128000)
    system_prompt: str | None = None
    features: dict[str, bool] | None = None


class TenantSettingsRead(TenantRead):
    features: dict[str, bool]


def _settings_read(tenant: Tenant) -> TenantSettingsRead:
    return TenantSettingsRead(
        **TenantRead.model_validate(tenant).model_dump(),
        features=load_json_object(tenant.features_json),
    )


# ── Routes ────────────────────────────────────────────────────

@router.post(
    "",
    response_model=TenantBootstrapResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register a new tenant (bootstrap)",
)
async def bootstrap_tenant(
    body: TenantBootstrapRequest,
    session: Session,
) -> TenantBootstrapResponse:
    """Create a tenant, its first owner user, and an initial API token.

    This is the only unauthenticated write endpoint.
    The raw API token is returned once — the caller must store it.
    """
    existing = await session.execute(
        select(Tenant).where(Tenant.slug == body.tenant_slug)
    )
    if existing.scalar_one_or_none():
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Slug '{body.tenant_slug}' is already taken",
        )

    tenant = Tenant(
        name=body.tenant_name,
        slug=body.tenant_slug,
        llm_model=body.llm_model,
        temperature=body.temperature,
        max_tokens=body.max_tokens,
        system_prompt=body.system_prompt,
    )
    session.add(tenant)
    await session.flush()  # populate tenant.id

    owner = User(
        tenant_id=tenant.id,
        email=body.owner_email,
        display_name=body.owner_display_name,
        role=UserRole.OWNER,
    )
    session.add(owner)
    await session.flush()

    raw_token = generate_api_token()
    prefix = raw_token[:8]
    session.add(ApiToken(
        tenant_id=tenant.id,
        user_id=owner.id,
        name="default",
        token_hash=hash_api_token(raw_token),
        token_prefix=prefix,
    ))
    await session.commit()
    await session.refresh(tenant)
    await session.refresh(owner)

    return TenantBootstrapResponse(
        tenant=TenantRead.model_validate(tenant),
        owner=UserRead.model_validate(owner),
        api_token=raw_token,
        token_prefix=prefix,
    )


@router.get(
    "/me",
    response_model=TenantSettingsRead,
    summary="Get current tenant info",
)
async def get_current_tenant(
    identity: Identity,
    session: Session,
) -> TenantSettingsRead:
    """Returns the tenant the caller belongs to."""
    tenant = await load_active_tenant(session, identity.tenant_id)
    return _settings_read(tenant)


@router.patch("/me", response_model=TenantSettingsRead)
async def update_current_tenant(
    body: TenantSettingsUpdate,
    identity: Identity,
    session: Session,
) -> TenantSettingsRead:
    """Change the tenant's generation defaults and feature flags (owner/admin)."""
    require_elevated(identity, "change tenant settings")

    tenant = await load_active_tenant(session, identity.tenant_id)
    update_data = body.model_dump(exclude_unset=True)

    if "features" in update_data:
        features = load_json_object(tenant.features_json)
        features.update(update_data.pop("features") or {})
        tenant.features_json = json.dumps(features)

    for field, value in update_data.items():
        setattr(tenant, field, value)

    tenant.updated_at = utcnow()
    session.add(tenant)
    await session.commit()
    await session.refresh(tenant)
    return _settings_read(tenant)
