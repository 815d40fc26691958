"""Import all models so SQLModel.metadata picks them up."""

from tenantchat.models.api_token import ApiToken
from tenantchat.models.chatbot import (
    Chatbot,
    ChatbotCreate,
    ChatbotRead,
    ChatbotSettings,
    ChatbotUpdate,
)
from tenantchat.models.conversation import Conversation, ConversationRead, ConversationUpdate
from tenantchat.models.feedback import Feedback, FeedbackCreate, FeedbackRating, FeedbackRead
from tenantchat.models.message import Message, MessageRead, MessageRole
from tenantchat.models.tenant import Tenant, TenantRead
from tenantchat.models.usage_metric import UsageMetric, UsageMetricRead
from tenantchat.models.user import User, UserRead, UserRole

__all__ = [
    "ApiToken",
    "Chatbot",
    "ChatbotCreate",
    "ChatbotRead",
    "ChatbotSettings",
    "ChatbotUpdate",
    "Conversation",
    "ConversationRead",
    "ConversationUpdate",
    "Feedback",
    "FeedbackCreate",
    "FeedbackRating",
    "FeedbackRead",
    "Message",
    "MessageRead",
    "MessageRole",
    "Tenant",
    "TenantRead",
    "UsageMetric",
    "UsageMetricRead",
    "User",
    "UserRead",
    "UserRole",
]
