"""Database models for the CRM chat backend."""

from .base import Base
from .user import User
from .conversation import Conversation
from .message import ChatMessage, MessageSender
from .contact import Company, Contact, Tag, contact_tags
from .activity import Activity, ActivityAction

__all__ = [
    "Base",
    "User",
    "Conversation",
    "ChatMessage",
    "MessageSender",
    "Company",
    "Contact",
    "Tag",
    "contact_tags",
    "Activity",
    "ActivityAction",
]
