"""
Conversation store: persistence for chat conversations and their messages.

Every operation is scoped to a user id. All writes are single-row (or
single-conversation bulk delete) operations committed immediately; there
are no multi-step transactions, so concurrent writers to the same
conversation only race on last_updated (last write wins).
"""
import logging
from datetime import datetime
from typing import Optional, Tuple
from uuid import uuid4

from sqlalchemy import and_, delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import settings
from core.constants import NEW_CONVERSATION_SENTINEL
from models.conversation import Conversation, default_conversation_title
from models.message import ChatMessage, MessageSender

logger = logging.getLogger(__name__)


class ConversationNotFoundError(ValueError):
    """Conversation is missing, archived, or owned by another user."""
    pass


class ConversationService:
    """
    Service for conversation and message persistence.

    This service:
    1. Creates and lists conversations
    2. Appends messages, advancing conversation recency
    3. Pages through a conversation's history oldest-first
    4. Clears (archives) conversations
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    # =========================================================================
    # Conversation Management
    # =========================================================================

    async def create_conversation(self, user_id: str, title: Optional[str] = None) -> Conversation:
        """Create an empty conversation for user_id."""
        now = datetime.utcnow()
        conversation = Conversation(
            id=str(uuid4()),
            user_id=user_id,
            title=title or default_conversation_title(now),
            created_at=now,
            last_updated=now,
            is_archived=False,
        )
        self.db.add(conversation)
        await self.db.commit()
        await self.db.refresh(conversation)

        logger.info("Created conversation %s for user %s", conversation.id, user_id)
        return conversation

    async def get_conversation(self, conversation_id: str, user_id: str) -> Optional[Conversation]:
        """Get a conversation owned by user_id, archived or not."""
        result = await self.db.execute(
            select(Conversation).where(
                and_(
                    Conversation.id == conversation_id,
                    Conversation.user_id == user_id,
                )
            )
        )
        return result.scalar_one_or_none()

    async def get_active_conversation(self, conversation_id: str, user_id: str) -> Optional[Conversation]:
        """
        Get a non-archived conversation with ownership verification.

        Returns:
            Conversation if found, owned by user_id and not archived; None otherwise
        """
        result = await self.db.execute(
            select(Conversation).where(
                and_(
                    Conversation.id == conversation_id,
                    Conversation.user_id == user_id,
                    Conversation.is_archived.is_(False),
                )
            )
        )
        return result.scalar_one_or_none()

    async def list_conversations(self, user_id: str) -> list[Conversation]:
        """Non-archived conversations for user_id, most recently updated first."""
        result = await self.db.execute(
            select(Conversation)
            .where(
                and_(
                    Conversation.user_id == user_id,
                    Conversation.is_archived.is_(False),
                )
            )
            .order_by(Conversation.last_updated.desc())
        )
        return list(result.scalars().all())

    # =========================================================================
    # Message Operations
    # =========================================================================

    async def save_message(
        self,
        user_id: str,
        text: str,
        sender: MessageSender,
        conversation_id: str,
    ) -> Tuple[Conversation, ChatMessage]:
        """
        Append a message to a conversation.

        When conversation_id is the "new" sentinel (or empty) a conversation is
        created first. The conversation's last_updated is advanced before the
        message is written.

        Returns:
            Tuple of (conversation, stored message)

        Raises:
            ConversationNotFoundError: If conversation_id does not name an active
                conversation owned by user_id
        """
        if conversation_id and conversation_id != NEW_CONVERSATION_SENTINEL:
            conversation = await self.get_active_conversation(conversation_id, user_id)
            if not conversation:
                raise ConversationNotFoundError("Conversation not found or unauthorized")
        else:
            conversation = await self.create_conversation(user_id)

        conversation.touch()

        message = ChatMessage.create(
            user_id=user_id,
            conversation_id=conversation.id,
            message=text,
            sender=sender,
            timestamp=conversation.last_updated,
        )
        self.db.add(message)
        await self.db.commit()
        await self.db.refresh(message)

        logger.debug(
            "Stored %s message %s in conversation %s",
            message.sender, message.id, conversation.id
        )
        return conversation, message

    async def get_history(
        self,
        user_id: str,
        conversation_id: str,
        page: int = 0,
        limit: Optional[int] = None,
    ) -> list[ChatMessage]:
        """
        One page of a conversation's messages, oldest first.

        Pages are 0-based; concatenating pages 0..n reproduces the full
        transcript. limit is clamped to [1, CHAT_HISTORY_MAX_LIMIT].
        """
        limit = limit or settings.CHAT_HISTORY_DEFAULT_LIMIT
        limit = max(1, min(limit, settings.CHAT_HISTORY_MAX_LIMIT))
        page = max(0, page)

        result = await self.db.execute(
            select(ChatMessage)
            .where(
                and_(
                    ChatMessage.user_id == user_id,
                    ChatMessage.conversation_id == conversation_id,
                )
            )
            .order_by(ChatMessage.timestamp.asc(), ChatMessage.id.asc())
            .offset(page * limit)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def get_transcript(self, user_id: str, conversation_id: str) -> list[ChatMessage]:
        """Every message of a conversation, oldest first."""
        result = await self.db.execute(
            select(ChatMessage)
            .where(
                and_(
                    ChatMessage.user_id == user_id,
                    ChatMessage.conversation_id == conversation_id,
                )
            )
            .order_by(ChatMessage.timestamp.asc(), ChatMessage.id.asc())
        )
        return list(result.scalars().all())

    async def clear_conversation(self, user_id: str, conversation_id: str) -> int:
        """
        Delete all of user_id's messages in a conversation and archive it.

        Returns:
            Number of messages deleted

        Raises:
            ConversationNotFoundError: If the conversation does not exist or is
                owned by another user
        """
        conversation = await self.get_conversation(conversation_id, user_id)
        if not conversation:
            raise ConversationNotFoundError("Conversation not found or unauthorized")

        deleted = await self.db.execute(
            delete(ChatMessage).where(
                and_(
                    ChatMessage.user_id == user_id,
                    ChatMessage.conversation_id == conversation_id,
                )
            )
        )
        conversation.archive()
        await self.db.commit()

        logger.info(
            "Cleared conversation %s for user %s (%d messages)",
            conversation_id, user_id, deleted.rowcount or 0
        )
        return deleted.rowcount or 0
