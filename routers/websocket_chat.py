"""
WebSocket route for real-time chat.

The client connects to /api/v1/ws/chat?token=<id token> and exchanges
{"event", "data"} frames. Authentication happens once, at handshake; a
refused connection receives connect_error and is closed with code 4001.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.database import get_session_factory
from core.services.chat_channel import ChatConnection
from core.services.connection_service import ConnectionRegistry

logger = logging.getLogger(__name__)

router = APIRouter(tags=["websocket"])


def get_connection_registry(websocket: WebSocket) -> ConnectionRegistry:
    """Connection registry owned by the running application."""
    return websocket.app.state.connection_registry


def _extract_token(websocket: WebSocket) -> Optional[str]:
    """Handshake credential from ?token=, falling back to an Authorization header."""
    token = websocket.query_params.get("token")
    if token:
        return token

    authorization = websocket.headers.get("authorization", "")
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() == "bearer" and credentials:
        return credentials.strip()
    return None


@router.websocket("/chat")
async def websocket_chat(
    websocket: WebSocket,
    registry: ConnectionRegistry = Depends(get_connection_registry),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    """
    Run one chat connection until the client disconnects.

    Frames are handed to the connection's queue as they arrive; handling
    happens on the connection's worker task.
    """
    await websocket.accept()

    connection = ChatConnection(websocket, registry, session_factory)
    if not await connection.authenticate(_extract_token(websocket)):
        return

    connection.start()
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000))

            # Binary frames are parsed as UTF-8 JSON like text frames
            raw = message.get("text")
            if raw is None:
                raw = message.get("bytes") or b""
            await connection.dispatch(raw)
    except WebSocketDisconnect as e:
        logger.info("WebSocket disconnect: connection_id=%s, code=%s", connection.connection_id, e.code)
    finally:
        await connection.close()
