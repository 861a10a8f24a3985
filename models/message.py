"""
Chat message model.

One row per chat turn side: the human utterance (sender ``user``) and the
assistant reply (sender ``ai``). Rows are bulk-deleted when their
conversation is cleared.
"""

import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import Column, DateTime, ForeignKey, Index, String, Text
from sqlalchemy.orm import relationship

from .base import Base


class MessageSender(str, Enum):
    """Who authored a chat message."""

    USER = "user"
    AI = "ai"


class ChatMessage(Base):
    """
    Plain-text chat message in a conversation.

    The message's user_id always equals its conversation's user_id; the
    conversation service enforces this on every write.
    """

    __tablename__ = "chat_messages"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    conversation_id = Column(
        String, ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False, index=True
    )

    message = Column(Text, nullable=False)
    sender = Column(String, nullable=False)

    timestamp = Column(DateTime, default=datetime.utcnow, nullable=False)

    # =========================================================================
    # Relationships
    # =========================================================================

    conversation = relationship("Conversation", back_populates="messages")

    # =========================================================================
    # Indexes
    # =========================================================================

    __table_args__ = (
        Index("ix_chat_messages_user_conversation_ts", "user_id", "conversation_id", "timestamp"),
    )

    # =========================================================================
    # Factory Methods
    # =========================================================================

    @classmethod
    def create(
        cls,
        user_id: str,
        conversation_id: str,
        message: str,
        sender: MessageSender,
        timestamp: datetime = None,
    ) -> "ChatMessage":
        """
        Create a message with sender validation.

        Raises:
            ValueError: If sender is not ``user`` or ``ai``
        """
        try:
            sender_str = MessageSender(sender).value
        except ValueError:
            raise ValueError("sender must be 'user' or 'ai'")

        return cls(
            id=str(uuid.uuid4()),
            user_id=user_id,
            conversation_id=conversation_id,
            message=message,
            sender=sender_str,
            timestamp=timestamp or datetime.utcnow(),
        )

    # =========================================================================
    # API Response Methods
    # =========================================================================

    def to_api_response(self) -> dict:
        """Wire shape used by the chat channel events."""
        return {
            "_id": self.id,
            "user": self.user_id,
            "conversationId": self.conversation_id,
            "message": self.message,
            "sender": self.sender,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }
