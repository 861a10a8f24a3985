"""
Activity log model.

Append-only record of user-visible CRM actions. The most recent entries are
rendered into the AI context briefing.
"""
import uuid
from datetime import datetime
from enum import Enum as PyEnum

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Index, String

from .base import Base


class ActivityAction(str, PyEnum):
    """Kinds of CRM actions recorded in the activity log."""

    CONTACT_CREATED = "contact_created"
    CONTACT_UPDATED = "contact_updated"
    CONTACT_DELETED = "contact_deleted"
    BULK_IMPORT = "bulk_import"
    BULK_DELETE = "bulk_delete"
    USER_LOGIN = "user_login"
    USER_REGISTER = "user_register"


class Activity(Base):
    """
    Activity entry.

    Fields:
        action: What happened (ActivityAction value)
        entity_type: Kind of entity acted on ("contact", "user", ...)
        entity_id: Id of that entity, if any
        entity_name: Human-readable entity name, if any
        details: Additional context (JSON)
    """

    __tablename__ = "activities"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    action = Column(String, nullable=False)
    entity_type = Column(String, nullable=True, index=True)
    entity_id = Column(String, nullable=True)
    entity_name = Column(String, nullable=True)
    details = Column(JSON, nullable=True)

    timestamp = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("ix_activities_user_timestamp", "user_id", "timestamp"),
    )
