"""
Context assembler: renders a user's CRM state and conversation transcript
into the system briefing that grounds the AI model.

The briefing is rebuilt on every AI call and never cached.
"""
import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import settings
from core.services.conversation_service import ConversationService
from core.summaries import (
    NONE,
    format_transcript_line,
    summarize_activity,
    summarize_contact,
    summarize_profile,
)
from models.activity import Activity
from models.contact import Contact
from models.user import User

logger = logging.getLogger(__name__)

BRIEFING_INTRO = (
    "You are a helpful AI assistant supporting a CRM user. Use the following context "
    "to understand their recent activity and provide relevant responses."
)
BRIEFING_CLOSING = "Respond helpfully using the above CRM context."


class UserNotFoundError(ValueError):
    """Raised when the briefing's user does not exist."""
    pass


def _section(lines: list[str]) -> str:
    return "\n".join(lines) if lines else NONE


def render_briefing(
    profile: str,
    contact_lines: list[str],
    activity_lines: list[str],
    transcript_lines: list[str],
    user_message: str,
) -> str:
    """Join the briefing sections. Empty sections render as 'none'."""
    return "\n\n".join([
        BRIEFING_INTRO,
        f"👤 User Information:\n{profile}",
        f"📇 Recent Contacts:\n{_section(contact_lines)}",
        f"📌 Recent Activities:\n{_section(activity_lines)}",
        f"💬 Recent Chat History:\n{_section(transcript_lines)}",
        f'📝 Current User Message:\n"{user_message}"',
        BRIEFING_CLOSING,
    ])


class ContextService:
    """Builds the AI context briefing for one (user, conversation) pair."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _get_user(self, user_id: str) -> Optional[User]:
        result = await self.db.execute(select(User).where(User.id == user_id))
        return result.scalar_one_or_none()

    async def _get_contacts(self, user_id: str) -> list[Contact]:
        """User's contacts, most recent interaction first, never-contacted last."""
        result = await self.db.execute(
            select(Contact)
            .where(Contact.created_by == user_id)
            .order_by(Contact.last_interaction.desc().nulls_last(), Contact.name.asc())
        )
        return list(result.unique().scalars().all())

    async def _get_recent_activities(self, user_id: str) -> list[Activity]:
        result = await self.db.execute(
            select(Activity)
            .where(Activity.user_id == user_id)
            .order_by(Activity.timestamp.desc())
            .limit(settings.CONTEXT_ACTIVITY_LIMIT)
        )
        return list(result.scalars().all())

    async def build_briefing(self, user_id: str, conversation_id: str, user_message: str) -> str:
        """
        Render the context briefing.

        Raises:
            UserNotFoundError: If user_id has no user record
        """
        user = await self._get_user(user_id)
        if not user:
            raise UserNotFoundError(f"User {user_id} not found")

        contacts = await self._get_contacts(user_id)
        activities = await self._get_recent_activities(user_id)
        transcript = await ConversationService(self.db).get_transcript(user_id, conversation_id)

        profile = summarize_profile(user)
        contact_lines = [summarize_contact(c, settings.CONTEXT_NOTES_MAX_CHARS) for c in contacts]
        activity_lines = [summarize_activity(a) for a in activities]
        transcript_lines = [format_transcript_line(m) for m in transcript]

        briefing = render_briefing(profile, contact_lines, activity_lines, transcript_lines, user_message)
        if len(briefing) <= settings.CONTEXT_MAX_CHARS:
            return briefing

        return self._fit_to_budget(profile, contact_lines, activity_lines, transcript_lines, user_message)

    def _fit_to_budget(
        self,
        profile: str,
        contact_lines: list[str],
        activity_lines: list[str],
        transcript_lines: list[str],
        user_message: str,
    ) -> str:
        """Drop least-recent contacts until the briefing fits CONTEXT_MAX_CHARS.

        Only the contact section is trimmed; if the remaining sections alone
        exceed the budget the briefing is returned without contacts.
        """
        kept = list(contact_lines)
        while kept:
            kept.pop()
            omitted = len(contact_lines) - len(kept)
            lines = kept + [f"• ... {omitted} more contacts omitted"]
            briefing = render_briefing(profile, lines, activity_lines, transcript_lines, user_message)
            if len(briefing) <= settings.CONTEXT_MAX_CHARS:
                logger.info("Context briefing trimmed: %d of %d contacts kept", len(kept), len(contact_lines))
                return briefing

        logger.warning("Context briefing exceeds %d chars without contacts", settings.CONTEXT_MAX_CHARS)
        lines = [f"• ... {len(contact_lines)} more contacts omitted"]
        return render_briefing(profile, lines, activity_lines, transcript_lines, user_message)
