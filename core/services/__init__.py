"""
Core services for the CRM chat assistant.

Services encapsulate conversation persistence, context assembly, activity
logging, the connection registry, and the per-connection chat protocol.
"""

from .activity_service import ActivityService
from .connection_service import ConnectionRegistry, ConnectionServiceError
from .context_service import ContextService, UserNotFoundError
from .conversation_service import ConversationNotFoundError, ConversationService
from .chat_channel import ChatConnection, ConnectionState

__all__ = [
    # Conversation store
    "ConversationService",
    "ConversationNotFoundError",
    # Context assembler
    "ContextService",
    "UserNotFoundError",
    # Activity logger
    "ActivityService",
    # Connection registry
    "ConnectionRegistry",
    "ConnectionServiceError",
    # Chat channel
    "ChatConnection",
    "ConnectionState",
]
