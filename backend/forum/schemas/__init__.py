"""Pydantic schemas for API request/response validation."""

from forum.schemas.messages import (
    ANONYMOUS,
    NO_LONGER_ENROLLED,
    EnrollmentRead,
    MessagePageRead,
    MessageRead,
    MessageView,
    UserRead,
)
from forum.schemas.conversations import (
    ConversationCreate,
    ConversationDetailResponse,
    ConversationListItem,
    ConversationListResponse,
    ConversationRead,
    ConversationUpdate,
    ConversationView,
    MarkAllAsReadResponse,
    NewConversationOptions,
    TaggingRequest,
    TagRead,
)

__all__ = [
    # Messages
    "ANONYMOUS",
    "NO_LONGER_ENROLLED",
    "EnrollmentRead",
    "MessagePageRead",
    "MessageRead",
    "MessageView",
    "UserRead",
    # Conversations
    "ConversationCreate",
    "ConversationDetailResponse",
    "ConversationListItem",
    "ConversationListResponse",
    "ConversationRead",
    "ConversationUpdate",
    "ConversationView",
    "MarkAllAsReadResponse",
    "NewConversationOptions",
    "TaggingRequest",
    "TagRead",
]
