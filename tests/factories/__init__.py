"""Test factories for creating model instances."""

from .conversation_factory import ConversationFactory
from .message_factory import AIMessageFactory, MessageFactory
from .user_factory import UserFactory

__all__ = ["AIMessageFactory", "ConversationFactory", "MessageFactory", "UserFactory"]
