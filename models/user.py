"""
User model.

Users are owned by the identity/CRM side of the system. The chat core only
reads them: the handshake resolves an identity-provider subject to a row here,
and the context briefing renders the profile fields.
"""

import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, String
from sqlalchemy.orm import relationship

from .base import Base


class User(Base):
    """
    CRM user linked to an identity-provider subject.

    Fields:
        external_id: Subject (``sub``) claim of the identity provider token
        display_name: Name shown in the UI and in the AI briefing
        preference: Free-form preference string (e.g. UI theme)
    """

    __tablename__ = "users"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    external_id = Column(String, nullable=False, unique=True, index=True)

    display_name = Column(String, nullable=True)
    email = Column(String, nullable=True, unique=True)
    profile_picture = Column(String, nullable=True)
    preference = Column(String, nullable=True)

    last_login = Column(DateTime, default=datetime.utcnow)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # =========================================================================
    # Relationships
    # =========================================================================

    conversations = relationship("Conversation", back_populates="user", cascade="all, delete-orphan")

    # =========================================================================
    # Helper Methods
    # =========================================================================

    def update_last_login(self) -> None:
        """Stamp the current time as the last login."""
        self.last_login = datetime.utcnow()

    def to_api_response(self) -> dict:
        return {
            "id": self.id,
            "external_id": self.external_id,
            "display_name": self.display_name,
            "email": self.email,
            "profile_picture": self.profile_picture,
            "preference": self.preference,
            "last_login": self.last_login.isoformat() if self.last_login else None,
        }
