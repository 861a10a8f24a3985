"""
Natural-language projections of CRM records for the AI context briefing.

Each function takes a record and returns text. None of them touch the
database, so they work on ORM instances and on plain stand-ins alike.
"""
from datetime import datetime
from typing import Optional

from models.message import MessageSender

UNKNOWN = "unknown"
NONE = "none"


def _format_date(value: Optional[datetime]) -> str:
    return value.strftime("%Y-%m-%d") if value else UNKNOWN


def _format_datetime(value: Optional[datetime]) -> str:
    return value.strftime("%Y-%m-%d %H:%M") if value else UNKNOWN


def _clip(text: str, limit: Optional[int]) -> str:
    if limit is None or len(text) <= limit:
        return text
    return text[: max(limit - 3, 0)].rstrip() + "..."


def summarize_profile(user) -> str:
    """Render the user's profile block."""
    return "\n".join([
        f"• Name: {user.display_name or UNKNOWN}",
        f"• Email: {user.email or UNKNOWN}",
        f"• Preference: {user.preference or NONE}",
    ])


def summarize_contact(contact, notes_max_chars: Optional[int] = None) -> str:
    """One-line summary: name, contact channel, employer, last interaction, notes, tags."""
    company_name = getattr(contact, "company_name", None)
    employer = company_name if company_name else "an unknown company"
    channel = contact.email or contact.phone or UNKNOWN
    # Collapsed to a single line before clipping
    flat_notes = " ".join((contact.notes or "").split())
    notes = _clip(flat_notes, notes_max_chars) if flat_notes else NONE
    tag_names = list(getattr(contact, "tag_names", None) or [])
    tags = ", ".join(tag_names) if tag_names else NONE

    return (
        f"• {contact.name} can be reached at {channel}. "
        f"They are currently employed at {employer}. "
        f"The last recorded interaction was on {_format_date(contact.last_interaction)}. "
        f"Notes: {notes}. "
        f"Tags: {tags}."
    )


def summarize_activity(activity) -> str:
    """One-line summary: action verb, entity type, entity name, timestamp."""
    entity_type = activity.entity_type or "record"
    name = f' "{activity.entity_name}"' if activity.entity_name else ""
    return f'• Performed "{activity.action}" on {entity_type}{name} at {_format_datetime(activity.timestamp)}.'


def format_transcript_line(message) -> str:
    """Tag a transcript line by its sender."""
    if message.sender == MessageSender.AI.value:
        return f"AI Response: {message.message}"
    return f"User Message: {message.message}"
