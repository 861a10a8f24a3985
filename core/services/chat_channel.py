"""
Chat channel manager - the per-connection real-time chat protocol.

One ChatConnection wraps one WebSocket. Inbound frames are queued and handled
by a single worker task, so a connection's events are processed strictly in
the order received while the receive loop never waits on a handler.

Frames in both directions are JSON objects: {"event": <name>, "data": <payload>}.

Client events:
- join / join-chat: subscribe this connection to the user's room
- get-chat-history: one page of a conversation, oldest first
- send-message: persist the utterance, ask the AI, persist and deliver the reply
- clear-conversation: delete a conversation's messages and archive it

Server events:
- connect_error, chat-history, chat-history-error, ai-typing, new-message,
  error-message, conversation-cleared, clear-conversation-error
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Union
from uuid import uuid4

from fastapi import WebSocket
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.auth import ChatIdentity, Unauthenticated, authenticate_connection
from core.config import settings
from core.constants import NEW_CONVERSATION_SENTINEL, WS_CLOSE_UNAUTHORIZED
from core.llm import LLMService, llm_service
from core.services.connection_service import ConnectionRegistry, ConnectionServiceError
from core.services.context_service import ContextService
from core.services.conversation_service import ConversationNotFoundError, ConversationService
from models.message import MessageSender
from schemas.chat import (
    ChannelFrame,
    ClearConversationPayload,
    GetChatHistoryPayload,
    SendMessagePayload,
)

logger = logging.getLogger(__name__)

GENERIC_ERROR = "Something went wrong. Please try again."
TOO_MANY_PENDING = "Too many pending messages. Please wait for a reply."

_STOP = object()


class ConnectionState(str, Enum):
    CONNECTING = "connecting"
    AUTHENTICATED = "authenticated"
    JOINED = "joined"
    ACTIVE = "active"
    CLOSED = "closed"


class ChatConnection:
    """
    State machine and event handlers for one chat WebSocket.

    Lifecycle: connecting -> authenticated -> joined -> active -> closed.
    Every handled event gets its own database session from session_factory.
    """

    def __init__(
        self,
        websocket: WebSocket,
        registry: ConnectionRegistry,
        session_factory: async_sessionmaker[AsyncSession],
        llm: Optional[LLMService] = None,
        connection_id: Optional[str] = None,
    ):
        self.websocket = websocket
        self.registry = registry
        self.session_factory = session_factory
        self.llm = llm or llm_service
        self.connection_id = connection_id or str(uuid4())
        self.state = ConnectionState.CONNECTING
        self.identity: Optional[ChatIdentity] = None

        self._queue: asyncio.Queue = asyncio.Queue(maxsize=settings.CHAT_MAX_PENDING_FRAMES)
        self._send_lock = asyncio.Lock()
        self._worker: Optional[asyncio.Task] = None
        self._handlers: Dict[str, Callable[[Any], Awaitable[None]]] = {
            "join": self._on_join,
            "join-chat": self._on_join,
            "get-chat-history": self._on_get_chat_history,
            "send-message": self._on_send_message,
            "clear-conversation": self._on_clear_conversation,
        }

    @property
    def user_id(self) -> Optional[str]:
        return self.identity.user_id if self.identity else None

    # =========================================================================
    # Handshake
    # =========================================================================

    async def authenticate(self, token: Optional[str]) -> bool:
        """
        Verify the handshake credential.

        On failure sends connect_error, closes the socket with 4001 and
        returns False. No handler runs for a refused connection.
        """
        try:
            async with self.session_factory() as db:
                self.identity = await authenticate_connection(token, db)
        except Unauthenticated as e:
            reason = str(e)
        except SQLAlchemyError as e:
            logger.error("User lookup failed during handshake for connection %s: %s", self.connection_id, e)
            reason = "Authentication failed"
        else:
            self.state = ConnectionState.AUTHENTICATED
            logger.info("Connection %s authenticated as user %s", self.connection_id, self.identity.user_id)
            return True

        logger.info("Refusing connection %s: %s", self.connection_id, reason)
        await self.emit("connect_error", reason)
        self.state = ConnectionState.CLOSED
        try:
            await self.websocket.close(code=WS_CLOSE_UNAUTHORIZED)
        except RuntimeError as e:
            logger.debug("Close after refused handshake failed: %s", e)
        return False

    # =========================================================================
    # Transport
    # =========================================================================

    async def emit(self, event: str, data: Any = None) -> bool:
        """
        Send one server event to this connection.

        Returns False (and sends nothing) once the connection is closed or
        when the transport rejects the frame.
        """
        if self.state is ConnectionState.CLOSED:
            logger.debug("Dropping %s for closed connection %s", event, self.connection_id)
            return False

        async with self._send_lock:
            try:
                await self.websocket.send_json({"event": event, "data": data})
                return True
            except Exception as e:
                logger.warning("Failed to send %s to connection %s: %s", event, self.connection_id, e)
                return False

    def start(self) -> None:
        """Start the worker that drains this connection's event queue."""
        if self._worker is None:
            self._worker = asyncio.create_task(self._run())

    async def dispatch(self, raw: Union[str, bytes]) -> None:
        """
        Queue one raw inbound frame for in-order handling.

        A frame arriving while CHAT_MAX_PENDING_FRAMES are already waiting is
        refused with an error-message instead of being queued.
        """
        if self.state is ConnectionState.CLOSED:
            return
        try:
            self._queue.put_nowait(raw)
        except asyncio.QueueFull:
            logger.warning("Queue full on connection %s, refusing frame", self.connection_id)
            await self.emit("error-message", TOO_MANY_PENDING)

    async def close(self) -> None:
        """
        Close the connection: leave the room and stop the worker.

        Queued events are dropped. An event already being handled runs to
        completion; its emits are dropped and its writes are kept.
        """
        self.state = ConnectionState.CLOSED
        self.registry.leave(self)

        if self._worker is not None:
            # Blocks only while the queue is full; the worker skips queued frames once closed
            await self._queue.put(_STOP)
            await self._worker
            self._worker = None

        logger.info("Connection %s closed", self.connection_id)

    async def _run(self) -> None:
        while True:
            raw = await self._queue.get()
            try:
                if raw is _STOP:
                    break
                if self.state is ConnectionState.CLOSED:
                    continue
                await self.process_frame(raw)
            except Exception as e:
                logger.exception("Unhandled error on connection %s: %s", self.connection_id, e)
            finally:
                self._queue.task_done()

    async def process_frame(self, raw: Union[str, bytes]) -> None:
        """Parse one text or binary frame and route it to its handler."""
        try:
            frame = ChannelFrame.model_validate_json(raw)
        except (ValidationError, UnicodeDecodeError):
            logger.debug("Malformed frame on connection %s", self.connection_id)
            await self.emit("error-message", "Invalid message format")
            return

        await self.handle_event(frame.event, frame.data)

    async def handle_event(self, event: str, data: Any = None) -> None:
        handler = self._handlers.get(event)
        if handler is None:
            logger.debug("Unknown event %s on connection %s", event, self.connection_id)
            await self.emit("error-message", "Unknown event")
            return

        await handler(data)

    def _mark_active(self) -> None:
        if self.state in (ConnectionState.AUTHENTICATED, ConnectionState.JOINED):
            self.state = ConnectionState.ACTIVE

    # =========================================================================
    # Event handlers
    # =========================================================================

    async def _on_join(self, data: Any) -> None:
        try:
            self.registry.join(self.user_id, self)
        except ConnectionServiceError as e:
            logger.error("Join failed for connection %s: %s", self.connection_id, e)
            await self.emit("error-message", GENERIC_ERROR)
            return

        if self.state is ConnectionState.AUTHENTICATED:
            self.state = ConnectionState.JOINED

    async def _on_get_chat_history(self, data: Any) -> None:
        self._mark_active()

        try:
            payload = GetChatHistoryPayload.model_validate(data or {})
        except ValidationError:
            await self.emit("chat-history", [])
            await self.emit("chat-history-error", "Invalid history request")
            return

        conversation_id = payload.conversationId
        if not conversation_id or conversation_id == NEW_CONVERSATION_SENTINEL:
            await self.emit("chat-history", [])
            await self.emit("chat-history-error", "Conversation ID is required")
            return

        try:
            async with self.session_factory() as db:
                service = ConversationService(db)
                conversation = await service.get_conversation(conversation_id, self.user_id)
                if conversation is None:
                    records = None
                else:
                    messages = await service.get_history(
                        self.user_id, conversation_id, page=payload.page, limit=payload.limit
                    )
                    records = [m.to_api_response() for m in messages]
        except Exception as e:
            logger.exception("Error loading history for conversation %s: %s", conversation_id, e)
            await self.emit("chat-history-error", "Unable to load messages.")
            return

        if records is None:
            await self.emit("chat-history", [])
            await self.emit("chat-history-error", "Conversation not found")
            return

        await self.emit("chat-history", records)

    async def _on_send_message(self, data: Any) -> None:
        try:
            payload = SendMessagePayload.model_validate(data or {})
        except ValidationError:
            await self.emit("error-message", "Invalid message format")
            return

        if payload.is_blank:
            return

        self._mark_active()
        user_id = self.user_id
        typing = False

        try:
            async with self.session_factory() as db:
                conversation, _ = await ConversationService(db).save_message(
                    user_id, payload.message, MessageSender.USER, payload.conversationId
                )
                conversation_id = conversation.id

                typing = True
                await self.emit("ai-typing", True)

                briefing = await ContextService(db).build_briefing(
                    user_id, conversation_id, payload.message
                )

            # No session is held open across the completion call
            reply = await self.llm.generate_reply(briefing, payload.message)

            async with self.session_factory() as db:
                _, ai_message = await ConversationService(db).save_message(
                    user_id, reply, MessageSender.AI, conversation_id
                )
                record = ai_message.to_api_response()
        except ConversationNotFoundError as e:
            logger.info("send-message rejected for user %s: %s", user_id, e)
            error = "Conversation not found"
        except Exception as e:
            logger.exception("Error handling send-message for user %s: %s", user_id, e)
            error = GENERIC_ERROR
        else:
            await self.emit("ai-typing", False)
            await self.emit("new-message", record)
            return

        # Only clear an indicator that was actually raised
        if typing:
            await self.emit("ai-typing", False)
        await self.emit("error-message", error)

    async def _on_clear_conversation(self, data: Any) -> None:
        self._mark_active()

        try:
            payload = ClearConversationPayload.model_validate(data or {})
        except ValidationError:
            payload = ClearConversationPayload()

        if not payload.userId or not payload.conversationId:
            await self.emit("clear-conversation-error", "Missing userId or conversationId")
            return

        if payload.userId != self.user_id:
            logger.warning(
                "User %s attempted to clear conversation %s of user %s",
                self.user_id, payload.conversationId, payload.userId,
            )
            await self.emit("clear-conversation-error", "Not authorized to clear this conversation")
            return

        try:
            async with self.session_factory() as db:
                await ConversationService(db).clear_conversation(self.user_id, payload.conversationId)
        except ConversationNotFoundError:
            await self.emit("clear-conversation-error", "Conversation not found")
            return
        except Exception as e:
            logger.exception("Error clearing conversation %s: %s", payload.conversationId, e)
            await self.emit("clear-conversation-error", "Failed to clear conversation")
            return

        cleared = {"conversationId": payload.conversationId}
        if self.registry.room_of(self) == self.user_id:
            await self.registry.emit_to_user(self.user_id, "conversation-cleared", cleared)
        else:
            await self.emit("conversation-cleared", cleared)
