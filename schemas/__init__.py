"""Pydantic schemas for API request/response and channel payload validation."""

from .chat import (
    ChannelFrame,
    GetChatHistoryPayload,
    SendMessagePayload,
    ClearConversationPayload,
    CreateConversationRequest,
    ConversationResponse,
)
from .user_schemas import (
    RegisterUserRequest,
    UpdateProfileRequest,
    UserResponse,
)

__all__ = [
    # Chat channel
    "ChannelFrame",
    "GetChatHistoryPayload",
    "SendMessagePayload",
    "ClearConversationPayload",
    # Conversations
    "CreateConversationRequest",
    "ConversationResponse",
    # Users
    "RegisterUserRequest",
    "UpdateProfileRequest",
    "UserResponse",
]
