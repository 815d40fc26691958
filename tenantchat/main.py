"""FastAPI application entrypoint."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from tenantchat.api.v1 import v1_router
from tenantchat.core.config import get_settings
from tenantchat.core.database import async_session_factory, init_db
from tenantchat.core.errors import DomainError, InternalError
from tenantchat.models.tenant import Tenant
from tenantchat.models.user import User, UserRole

_settings = get_settings()

logging.basicConfig(
    level=_settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


async def _ensure_demo_identity() -> None:
    """Create the demo tenant/user that anonymous requests run as."""
    async with async_session_factory() as session:
        if await session.get(Tenant, _settings.demo_tenant_id) is None:
            session.add(Tenant(id=_settings.demo_tenant_id, name="Demo", slug="demo"))
            await session.flush()
        if await session.get(User, _settings.demo_user_id) is None:
            session.add(User(
                id=_settings.demo_user_id,
                tenant_id=_settings.demo_tenant_id,
                email="demo@example.com",
                display_name="Demo user",
                role=UserRole.GUEST,
            ))
        await session.commit()


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    # Startup: ensure tables exist (use Alembic in production)
    await init_db()
    if _settings.allow_anonymous:
        await _ensure_demo_identity()
        logger.warning("Anonymous access enabled; unauthenticated requests use the demo tenant")
    yield


app = FastAPI(
    title="tenantchat",
    version="0.1.0",
    description="Multi-tenant conversational AI backend with streamed completions",
    lifespan=lifespan,
)

# ── CORS ─────────────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in _settings.allowed_origins.split(",")],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Conversation-ID", "X-Is-New-Conversation"],
)


# ── Error mapping ────────────────────────────────────────────

@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(SQLAlchemyError)
async def store_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.error("%s %s failed on the store", request.method, request.url.path, exc_info=exc)
    error = InternalError("The request could not be completed; try again later")
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(
    _request: Request, exc: RequestValidationError
) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={
            "code": "VALIDATION_ERROR",
            "message": "Invalid request",
            "details": {"errors": jsonable_encoder(exc.errors())},
        },
    )


# ── API routes ───────────────────────────────────────────────
app.include_router(v1_router)


@app.get("/health", tags=["system"])
async def health_check() -> dict:
    return {"status": "ok"}
