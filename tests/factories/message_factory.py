"""Factory for creating ChatMessage test instances."""
import uuid
from datetime import datetime

import factory

from models.message import ChatMessage, MessageSender


class MessageFactory(factory.Factory):
    """Factory for creating user ChatMessage model instances."""

    class Meta:
        model = ChatMessage

    id = factory.LazyFunction(lambda: str(uuid.uuid4()))
    user_id = factory.LazyFunction(lambda: str(uuid.uuid4()))
    conversation_id = factory.LazyFunction(lambda: str(uuid.uuid4()))
    message = factory.Sequence(lambda n: f"Test message {n}")
    sender = MessageSender.USER.value
    timestamp = factory.LazyFunction(datetime.utcnow)


class AIMessageFactory(MessageFactory):
    """Factory for AI reply messages."""

    sender = MessageSender.AI.value
    message = factory.Sequence(lambda n: f"AI reply {n}")
