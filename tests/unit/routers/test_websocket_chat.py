"""
Unit tests for the WebSocket chat endpoint.

Tests the /api/v1/ws/chat endpoint for:
- Handshake authentication (token query parameter, Authorization fallback)
- Frame routing through the connection's worker
- Registry cleanup on disconnect

Note: Uses mock WebSocket objects and invokes the endpoint handler directly
with its dependencies, rather than a live transport.
"""

import asyncio
import json
from unittest.mock import AsyncMock, patch

import pytest

from core.constants import WS_CLOSE_UNAUTHORIZED
from routers.websocket_chat import _extract_token, websocket_chat


class MockWebSocket:
    """Mock WebSocket for testing.

    Replays scripted client frames, then waits until at least expect_sent
    server frames were sent before simulating a client disconnect.
    """

    def __init__(self, query_params: dict = None, headers: dict = None, frames: list = None, expect_sent: int = 0):
        self.query_params = query_params or {}
        self.headers = headers or {}
        self.accepted = False
        self.closed = False
        self.close_code = None
        self.sent_messages = []
        self._frames = list(frames or [])
        self._expect_sent = expect_sent

    async def accept(self):
        self.accepted = True

    async def close(self, code: int = 1000, reason: str = None):
        self.closed = True
        self.close_code = code

    async def send_json(self, data: dict):
        self.sent_messages.append(data)

    async def receive(self) -> dict:
        if self._frames:
            frame = self._frames.pop(0)
            if isinstance(frame, bytes):
                return {"type": "websocket.receive", "bytes": frame}
            return {"type": "websocket.receive", "text": frame}
        for _ in range(200):
            if len(self.sent_messages) >= self._expect_sent:
                break
            await asyncio.sleep(0.01)
        return {"type": "websocket.disconnect", "code": 1000}


def frame(event: str, data=None) -> str:
    return json.dumps({"event": event, "data": data})


class TestExtractToken:
    """Tests for handshake credential extraction."""

    def test_query_param(self):
        ws = MockWebSocket(query_params={"token": "abc"})
        assert _extract_token(ws) == "abc"

    def test_authorization_header_fallback(self):
        ws = MockWebSocket(headers={"authorization": "Bearer xyz"})
        assert _extract_token(ws) == "xyz"

    def test_query_param_wins(self):
        ws = MockWebSocket(query_params={"token": "abc"}, headers={"authorization": "Bearer xyz"})
        assert _extract_token(ws) == "abc"

    def test_non_bearer_header_ignored(self):
        ws = MockWebSocket(headers={"authorization": "Basic dXNlcjpwYXNz"})
        assert _extract_token(ws) is None

    def test_missing(self):
        assert _extract_token(MockWebSocket()) is None


class TestWebSocketConnectionAuth:
    """Tests for WebSocket connection authentication."""

    @pytest.mark.asyncio
    async def test_connection_without_token_rejected(self, registry, session_factory):
        """Connection without a token gets connect_error and close code 4001."""
        websocket = MockWebSocket(frames=[frame("join")])

        await websocket_chat(websocket, registry, session_factory)

        assert websocket.accepted is True  # Connection accepted before check
        assert websocket.closed is True
        assert websocket.close_code == WS_CLOSE_UNAUTHORIZED
        assert websocket.sent_messages == [{"event": "connect_error", "data": "Token missing"}]
        assert registry.count() == 0

    @pytest.mark.asyncio
    async def test_invalid_token_rejected_before_any_handler(self, registry, session_factory):
        from core.auth import Unauthenticated

        websocket = MockWebSocket(query_params={"token": "bad"}, frames=[frame("join")])

        with patch("core.auth.verify_token", new=AsyncMock(side_effect=Unauthenticated("Could not validate credentials"))):
            await websocket_chat(websocket, registry, session_factory)

        assert [m["event"] for m in websocket.sent_messages] == ["connect_error"]
        assert websocket.close_code == WS_CLOSE_UNAUTHORIZED
        assert registry.count() == 0


class TestWebSocketChatSession:
    """Tests for an authenticated chat session."""

    @pytest.mark.asyncio
    async def test_join_then_history(self, registry, session_factory, test_user, test_conversation, test_messages, mock_user_payload):
        websocket = MockWebSocket(
            query_params={"token": "good"},
            frames=[
                frame("join"),
                frame("get-chat-history", {"conversationId": test_conversation.id, "limit": 2}),
            ],
            expect_sent=1,
        )

        with patch("core.auth.verify_token", new=AsyncMock(return_value=mock_user_payload)):
            await websocket_chat(websocket, registry, session_factory)

        assert websocket.closed is False
        assert [m["event"] for m in websocket.sent_messages] == ["chat-history"]
        assert [r["_id"] for r in websocket.sent_messages[0]["data"]] == [m.id for m in test_messages[:2]]
        # Disconnect leaves the room
        assert registry.count() == 0

    @pytest.mark.asyncio
    async def test_malformed_frame_keeps_connection_open(self, registry, session_factory, test_user, mock_user_payload):
        websocket = MockWebSocket(
            query_params={"token": "good"},
            frames=["{not json", frame("nope")],
            expect_sent=2,
        )

        with patch("core.auth.verify_token", new=AsyncMock(return_value=mock_user_payload)):
            await websocket_chat(websocket, registry, session_factory)

        assert websocket.sent_messages == [
            {"event": "error-message", "data": "Invalid message format"},
            {"event": "error-message", "data": "Unknown event"},
        ]
        assert websocket.closed is False

    @pytest.mark.asyncio
    async def test_registry_from_app_state(self, registry):
        from types import SimpleNamespace

        from routers.websocket_chat import get_connection_registry

        websocket = MockWebSocket()
        websocket.app = SimpleNamespace(state=SimpleNamespace(connection_registry=registry))

        assert get_connection_registry(websocket) is registry

    @pytest.mark.asyncio
    async def test_binary_frame_handled_in_order(self, registry, session_factory, test_user, mock_user_payload):
        """A binary frame is parsed like a text frame and keeps its place in the queue."""
        websocket = MockWebSocket(
            query_params={"token": "good"},
            frames=[frame("nope").encode("utf-8"), b"\xff\xfe", frame("also-nope")],
            expect_sent=3,
        )

        with patch("core.auth.verify_token", new=AsyncMock(return_value=mock_user_payload)):
            await websocket_chat(websocket, registry, session_factory)

        assert websocket.sent_messages == [
            {"event": "error-message", "data": "Unknown event"},
            {"event": "error-message", "data": "Invalid message format"},
            {"event": "error-message", "data": "Unknown event"},
        ]
        assert websocket.closed is False

    @pytest.mark.asyncio
    async def test_binary_join_registers_connection(self, registry, session_factory, test_user, mock_user_payload):
        joined = []

        class _RecordingWebSocket(MockWebSocket):
            async def receive(self):
                message = await super().receive()
                if message["type"] == "websocket.disconnect":
                    joined.append(registry.count())
                return message

        websocket = _RecordingWebSocket(
            query_params={"token": "good"},
            frames=[frame("join").encode("utf-8"), frame("nope")],
            expect_sent=1,
        )

        with patch("core.auth.verify_token", new=AsyncMock(return_value=mock_user_payload)):
            await websocket_chat(websocket, registry, session_factory)

        assert websocket.sent_messages == [{"event": "error-message", "data": "Unknown event"}]
        assert joined == [1]
        assert registry.count() == 0
