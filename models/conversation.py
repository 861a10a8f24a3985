"""
Conversation model.

A conversation is a titled thread of messages between one user and the AI
assistant. Conversations are soft-deleted (archived) and never hard-deleted.
"""
import uuid
from datetime import datetime, timedelta

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, String
from sqlalchemy.orm import relationship

from .base import Base


def default_conversation_title(now: datetime | None = None) -> str:
    """Timestamped placeholder title for implicitly created conversations."""
    now = now or datetime.utcnow()
    return f"Conversation - {now.strftime('%Y-%m-%d %H:%M:%S')}"


class Conversation(Base):
    """
    Chat conversation owned by a single user.

    Invariants:
    - user_id never changes after creation
    - last_updated strictly increases on every appended message
    - is_archived is one-way: once True it is never reset
    """
    __tablename__ = "conversations"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(
        String,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    title = Column(String, default=lambda: default_conversation_title())

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    last_updated = Column(DateTime, default=datetime.utcnow, nullable=False)

    is_archived = Column(Boolean, default=False, nullable=False)

    # Listing query: a user's conversations by recency
    __table_args__ = (
        Index("ix_conversations_user_last_updated", "user_id", "last_updated"),
    )

    # Relationships
    user = relationship("User", back_populates="conversations")
    messages = relationship(
        "ChatMessage",
        back_populates="conversation",
        cascade="all, delete-orphan",
        order_by="ChatMessage.timestamp"
    )

    # =========================================================================
    # Helper Methods
    # =========================================================================

    def touch(self, now: datetime | None = None) -> datetime:
        """Advance last_updated, strictly past its previous value."""
        now = now or datetime.utcnow()
        previous = self.last_updated or self.created_at
        if previous is not None and now <= previous:
            now = previous + timedelta(microseconds=1)
        self.last_updated = now
        return now

    def archive(self) -> None:
        self.is_archived = True

    def to_api_response(self) -> dict:
        return {
            "_id": self.id,
            "user": self.user_id,
            "title": self.title,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "lastUpdated": self.last_updated.isoformat() if self.last_updated else None,
            "isArchived": bool(self.is_archived),
        }
