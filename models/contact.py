"""
CRM contact, company and tag models.

These tables are written by the CRM CRUD surface. The chat core only reads
them to build the AI context briefing.
"""
import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, String, Table, Text, UniqueConstraint
from sqlalchemy.orm import relationship

from .base import Base

contact_tags = Table(
    "contact_tags",
    Base.metadata,
    Column("contact_id", String, ForeignKey("contacts.id", ondelete="CASCADE"), primary_key=True),
    Column("tag_id", String, ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True),
)


class Company(Base):
    __tablename__ = "companies"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String, nullable=False)
    created_by = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=True, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class Tag(Base):
    __tablename__ = "tags"
    __table_args__ = (
        UniqueConstraint("name", "created_by", name="uq_tag_name_owner"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String, nullable=False)
    color = Column(String, default="#gray")
    created_by = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class Contact(Base):
    """
    CRM contact owned by the user who created it.

    last_interaction drives the ordering of contacts in the AI briefing
    (most recent first, contacts never interacted with last).
    """

    __tablename__ = "contacts"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String, nullable=False)
    email = Column(String, nullable=False)
    phone = Column(String, nullable=True)
    notes = Column(Text, nullable=True)

    company_id = Column(String, ForeignKey("companies.id", ondelete="SET NULL"), nullable=True)
    created_by = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=True)

    last_interaction = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    company = relationship("Company", lazy="joined")
    tags = relationship("Tag", secondary=contact_tags, lazy="selectin", order_by="Tag.name")

    __table_args__ = (
        UniqueConstraint("email", "created_by", name="uq_contact_email_owner"),
        Index("ix_contacts_owner_last_interaction", "created_by", "last_interaction"),
    )

    @property
    def company_name(self) -> str | None:
        return self.company.name if self.company else None

    @property
    def tag_names(self) -> list[str]:
        return [tag.name for tag in self.tags or []]
