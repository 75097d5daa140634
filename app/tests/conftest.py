"""
Pytest configuration and fixtures for testing
"""
import os
import pytest
from typing import AsyncGenerator
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import NullPool
from infrastructure.postgres_connection import Base
from infrastructure.message_broker import ConversationBroker
from models.user import User
from models.friend_request import FriendRequest
from models.conversation import Conversation
from services.auth_service import password_helper
from datetime import datetime, UTC


# Test database URL - using file-based SQLite to avoid in-memory connection issues
TEST_DATABASE_URL = "sqlite+aiosqlite:///./test.db"

TEST_PASSWORD = "correct-horse-battery"


@pytest.fixture(scope="session")
def test_password() -> str:
    """Plain password of every fixture user"""
    return TEST_PASSWORD


@pytest.fixture(scope="session")
def hashed_test_password() -> str:
    """Hashing is slow, so every fixture user shares one hash"""
    return password_helper.hash(TEST_PASSWORD)


@pytest.fixture(scope="function")
async def db_engine():
    """Create a test database engine"""
    # Import all models to ensure they're registered with Base.metadata
    import models  # noqa: F401

    # Remove test database if it exists
    if os.path.exists("./test.db"):
        os.remove("./test.db")

    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=NullPool,
    )

    # Create tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    # Drop tables and close
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()

    # Remove test database file
    if os.path.exists("./test.db"):
        os.remove("./test.db")


@pytest.fixture(scope="function")
def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session"""
    async with session_factory() as session:
        yield session
        await session.rollback()


async def _create_user(db_session: AsyncSession, username: str, full_name: str, hashed_password: str) -> User:
    user = User(
        username=username,
        full_name=full_name,
        hashed_password=hashed_password,
        avatar=None,
    )
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    return user


@pytest.fixture
async def test_user_1(db_session: AsyncSession, hashed_test_password: str) -> User:
    """Create a test user 1"""
    return await _create_user(db_session, "alice", "Alice Anderson", hashed_test_password)


@pytest.fixture
async def test_user_2(db_session: AsyncSession, hashed_test_password: str) -> User:
    """Create a test user 2"""
    return await _create_user(db_session, "bob", "Bob Brown", hashed_test_password)


@pytest.fixture
async def test_user_3(db_session: AsyncSession, hashed_test_password: str) -> User:
    """Create a test user 3"""
    return await _create_user(db_session, "carol", "Carol Clark", hashed_test_password)


def _request(sender: User, receiver: User, is_approved=None) -> FriendRequest:
    low, high = sorted((sender.id, receiver.id))
    return FriendRequest(
        sender_id=sender.id,
        receiver_id=receiver.id,
        user_low_id=low,
        user_high_id=high,
        is_approved=is_approved,
        created_at=datetime.now(UTC),
        responded_at=None if is_approved is None else datetime.now(UTC),
    )


@pytest.fixture
async def pending_request(
    db_session: AsyncSession,
    test_user_1: User,
    test_user_2: User
) -> FriendRequest:
    """Create a pending friend request from user 1 to user 2"""
    request = _request(test_user_1, test_user_2)
    db_session.add(request)
    await db_session.commit()
    await db_session.refresh(request)
    return request


@pytest.fixture
async def accepted_request(
    db_session: AsyncSession,
    test_user_1: User,
    test_user_3: User
) -> FriendRequest:
    """Create an accepted friend request from user 1 to user 3"""
    request = _request(test_user_1, test_user_3, is_approved=True)
    db_session.add(request)
    await db_session.commit()
    await db_session.refresh(request)
    return request


@pytest.fixture
async def conversation(
    db_session: AsyncSession,
    test_user_1: User,
    test_user_2: User
) -> Conversation:
    """Create a conversation between user 1 and user 2"""
    low, high = sorted((test_user_1.id, test_user_2.id))
    conversation = Conversation(user_id_1=low, user_id_2=high)
    db_session.add(conversation)
    await db_session.commit()
    await db_session.refresh(conversation)
    return conversation


@pytest.fixture
def broker() -> ConversationBroker:
    """A private broker so tests never share subscribers"""
    broker = ConversationBroker(queue_size=8)
    yield broker
    broker.close_all()


@pytest.fixture
async def redis_client():
    """Create a test Redis client using fakeredis"""
    import fakeredis.aioredis

    redis = fakeredis.aioredis.FakeRedis(decode_responses=True)

    yield redis

    # Cleanup
    await redis.flushall()
    await redis.aclose()
