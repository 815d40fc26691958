"""V1 API router aggregation."""

from fastapi import APIRouter

from tenantchat.api.v1.chat import router as chat_router
from tenantchat.api.v1.chatbots import router as chatbots_router
from tenantchat.api.v1.conversations import router as conversations_router
from tenantchat.api.v1.feedback import router as feedback_router
from tenantchat.api.v1.tenants import router as tenants_router
from tenantchat.api.v1.usage import router as usage_router

v1_router = APIRouter(prefix="/v1")
v1_router.include_router(tenants_router)
v1_router.include_router(chatbots_router)
v1_router.include_router(chat_router)
v1_router.include_router(conversations_router)
v1_router.include_router(feedback_router)
v1_router.include_router(usage_router)
