"""
Shared test fixtures for the CRM chat backend tests.

Tests run against TEST_DATABASE_URL, an in-memory SQLite database by default.
Point it at PostgreSQL (postgresql+asyncpg://...) to match production.
"""
import os
import uuid
from datetime import datetime, timedelta
from typing import AsyncGenerator, Generator
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from core.auth import AuthContext, ChatIdentity
from core.services.connection_service import ConnectionRegistry
from models.activity import Activity
from models.base import Base
from models.contact import Company, Contact, Tag
from models.conversation import Conversation
from models.message import ChatMessage
from models.user import User

TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL", "sqlite+aiosqlite:///:memory:")


def _engine_kwargs(url: str) -> dict:
    if url.startswith("sqlite"):
        return {"poolclass": StaticPool, "connect_args": {"check_same_thread": False}}
    return {"pool_pre_ping": True}


@pytest.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for each test with automatic cleanup."""
    engine = create_async_engine(TEST_DATABASE_URL, echo=False, **_engine_kwargs(TEST_DATABASE_URL))

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with session_factory() as session:
        yield session
        await session.rollback()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def override_get_db(db_session):
    """Dependency override for get_db that uses the test session."""
    async def _get_db():
        yield db_session
    return _get_db


class _TestSessionContext:
    """Async context manager wrapper for test db_session."""

    def __init__(self, session: AsyncSession):
        self._session = session

    def __call__(self) -> "_TestSessionContext":
        return self

    async def __aenter__(self) -> AsyncSession:
        return self._session

    async def __aexit__(self, *_) -> None:
        pass


@pytest.fixture
def session_factory(db_session) -> _TestSessionContext:
    """Session factory whose sessions are all the test db_session."""
    return _TestSessionContext(db_session)


@pytest.fixture
def override_get_session_factory(session_factory):
    """Dependency override for get_session_factory that uses the test session."""
    def _get_session_factory():
        return session_factory
    return _get_session_factory


@pytest.fixture
def mock_user_payload() -> dict:
    """Default mock identity-provider JWT payload."""
    return {
        "sub": "ext_test_123",
        "email": "test@example.com",
        "name": "Test User",
        "picture": "https://example.com/avatar.png",
        "iss": "https://securetoken.google.com/test-project",
        "aud": "test-project",
        "exp": 9999999999,
        "iat": 1234567890,
    }


@pytest.fixture
def mock_auth_context(mock_user_payload) -> AuthContext:
    """Default mock auth context for HTTP routes."""
    return AuthContext(
        user_id=mock_user_payload["sub"],
        email=mock_user_payload["email"],
        name=mock_user_payload["name"],
        picture=mock_user_payload["picture"],
    )


@pytest.fixture
def mock_current_user(mock_auth_context):
    """Dependency override for get_current_user with mock AuthContext."""
    async def _mock_get_current_user():
        return mock_auth_context
    return _mock_get_current_user


@pytest.fixture
def mock_jwks() -> dict:
    """Mock JWKS response for JWT verification tests."""
    return {
        "keys": [{
            "kty": "RSA",
            "kid": "test-key-id",
            "use": "sig",
            "n": "test-modulus",
            "e": "AQAB",
        }]
    }


@pytest.fixture
def mock_llm():
    """LLM service stub returning a fixed reply."""
    llm = AsyncMock()
    llm.generate_reply = AsyncMock(return_value="Here is what I found.")
    return llm


@pytest.fixture
def registry() -> ConnectionRegistry:
    return ConnectionRegistry()


@pytest.fixture
def app():
    """Create a fresh FastAPI app instance for testing."""
    from main import app as fastapi_app
    return fastapi_app


@pytest.fixture
def client(app, override_get_db, mock_current_user) -> Generator:
    """Synchronous test client with mocked auth and database."""
    from core.auth import get_current_user
    from core.database import get_db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = mock_current_user

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


async def _create_async_client(
    app, override_get_db, override_get_session_factory, auth_override=None
) -> AsyncGenerator[AsyncClient, None]:
    """Create an async test client with specified dependency overrides."""
    from core.auth import get_current_user
    from core.database import get_db, get_session_factory

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = override_get_session_factory
    if auth_override:
        app.dependency_overrides[get_current_user] = auth_override

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
async def async_client(app, override_get_db, override_get_session_factory, mock_current_user) -> AsyncGenerator:
    """Async test client with mocked auth and database."""
    async for client in _create_async_client(app, override_get_db, override_get_session_factory, mock_current_user):
        yield client


@pytest.fixture
async def unauthenticated_async_client(app, override_get_db, override_get_session_factory) -> AsyncGenerator:
    """Async test client without auth mocking (for auth failure tests)."""
    async for client in _create_async_client(app, override_get_db, override_get_session_factory, auth_override=None):
        yield client


@pytest.fixture
async def test_user(db_session, mock_user_payload) -> User:
    """Create a test user linked to the mock_user_payload subject."""
    user = User(
        id="user_test_123",
        external_id=mock_user_payload["sub"],
        display_name="Test User",
        email="test@example.com",
        preference="dark",
    )
    db_session.add(user)
    await db_session.commit()
    return user


@pytest.fixture
async def other_user(db_session) -> User:
    """Create another user for authorization tests."""
    user = User(id="user_other_456", external_id="ext_other_456", email="other@example.com")
    db_session.add(user)
    await db_session.commit()
    return user


@pytest.fixture
def chat_identity(test_user) -> ChatIdentity:
    return ChatIdentity(user_id=test_user.id, email=test_user.email, name=test_user.display_name)


@pytest.fixture
async def test_conversation(db_session, test_user) -> Conversation:
    """Create an empty conversation for the test user."""
    created = datetime.utcnow() - timedelta(hours=1)
    conversation = Conversation(
        id=str(uuid.uuid4()),
        user_id=test_user.id,
        title="Test Conversation",
        created_at=created,
        last_updated=created,
    )
    db_session.add(conversation)
    await db_session.commit()
    return conversation


@pytest.fixture
async def other_user_conversation(db_session, other_user) -> Conversation:
    """Create a conversation belonging to another user for authorization tests."""
    conversation = Conversation(id=str(uuid.uuid4()), user_id=other_user.id, title="Other User's Conversation")
    db_session.add(conversation)
    await db_session.commit()
    return conversation


@pytest.fixture
async def test_messages(db_session, test_user, test_conversation) -> list[ChatMessage]:
    """Create a five-message exchange in the test conversation, oldest first."""
    base = test_conversation.created_at
    texts = [
        ("user", "Who did I last talk to?"),
        ("ai", "You last spoke with Ada Lovelace."),
        ("user", "When was that?"),
        ("ai", "On 2024-03-01."),
        ("user", "Thanks!"),
    ]
    messages = [
        ChatMessage(
            id=str(uuid.uuid4()),
            user_id=test_user.id,
            conversation_id=test_conversation.id,
            message=text,
            sender=sender,
            timestamp=base + timedelta(seconds=i + 1),
        )
        for i, (sender, text) in enumerate(texts)
    ]
    db_session.add_all(messages)
    test_conversation.last_updated = messages[-1].timestamp
    await db_session.commit()
    return messages


@pytest.fixture
async def test_contacts(db_session, test_user) -> list[Contact]:
    """Two contacts: one recently contacted with company and tags, one never contacted."""
    company = Company(id=str(uuid.uuid4()), name="Analytical Engines Ltd", created_by=test_user.id)
    tag = Tag(id=str(uuid.uuid4()), name="vip", created_by=test_user.id)
    contacts = [
        Contact(
            id=str(uuid.uuid4()),
            name="Ada Lovelace",
            email="ada@example.com",
            notes="Interested in the premium plan",
            company=company,
            tags=[tag],
            created_by=test_user.id,
            last_interaction=datetime(2024, 3, 1, 10, 30),
        ),
        Contact(
            id=str(uuid.uuid4()),
            name="Charles Babbage",
            email="charles@example.com",
            company=None,
            tags=[],
            created_by=test_user.id,
            last_interaction=None,
        ),
    ]
    db_session.add_all(contacts)
    await db_session.commit()
    return contacts


@pytest.fixture
async def test_activities(db_session, test_user) -> list[Activity]:
    """Seven activities for the test user, one minute apart."""
    base = datetime(2024, 3, 1, 9, 0)
    activities = [
        Activity(
            id=str(uuid.uuid4()),
            user_id=test_user.id,
            action="contact_updated",
            entity_type="contact",
            entity_name=f"Contact {i}",
            details={},
            timestamp=base + timedelta(minutes=i),
        )
        for i in range(7)
    ]
    db_session.add_all(activities)
    await db_session.commit()
    return activities
