"""
Pydantic schemas for the chat channel and conversation endpoints.

Channel payloads keep the camelCase field names the web client sends.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from core.constants import NEW_CONVERSATION_SENTINEL


class ChannelFrame(BaseModel):
    """One WebSocket frame in either direction: a named event plus payload."""

    event: str = Field(..., min_length=1, description="Event name, e.g. 'send-message'")
    data: Any = Field(None, description="Event payload")


class GetChatHistoryPayload(BaseModel):
    """Client payload for 'get-chat-history'."""

    conversationId: Optional[str] = Field(None, description="Conversation to page through")
    page: int = Field(0, ge=0, description="0-based page index")
    limit: Optional[int] = Field(None, ge=1, description="Page size (capped server-side)")


class SendMessagePayload(BaseModel):
    """Client payload for 'send-message'."""

    message: Optional[str] = Field(None, description="Utterance text")
    conversationId: str = Field(
        NEW_CONVERSATION_SENTINEL,
        description="Existing conversation id, or 'new' to start a conversation",
    )

    @field_validator("conversationId", mode="before")
    @classmethod
    def default_to_new(cls, v):
        return v or NEW_CONVERSATION_SENTINEL

    @property
    def is_blank(self) -> bool:
        return not self.message or not self.message.strip()


class ClearConversationPayload(BaseModel):
    """Client payload for 'clear-conversation'."""

    userId: Optional[str] = None
    conversationId: Optional[str] = None


class CreateConversationRequest(BaseModel):
    """Request to create a new conversation explicitly."""

    title: Optional[str] = Field(None, description="Title; defaults to a timestamped placeholder")


class ConversationResponse(BaseModel):
    """Conversation metadata."""

    id: str
    user_id: str
    title: str
    created_at: datetime
    last_updated: datetime
    is_archived: bool

    model_config = {"from_attributes": True}
