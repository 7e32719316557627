import asyncio
import os

import pytest
from mongomock_motor import AsyncMongoMockClient
from redis import exceptions as redis_errors
from unittest.mock import AsyncMock, Mock

# Mock environment variables before importing app modules
os.environ["JWT_SECRET"] = "test-secret"
os.environ["PUBLIC_BASE_URL"] = "https://chat.test"
os.environ.pop("REDIS_URL", None)

from chatsync.repositories.message_repository import MessageRepository
from chatsync.repositories.recent_message_repository import RecentMessageRepository
from chatsync.repositories.user_repository import UserRepository
from chatsync.schemas.user import ChatUser
from chatsync.services.chat_service import ChatService
from chatsync.utils.realtime_bus import LocalBus


@pytest.fixture
def db():
    return AsyncMongoMockClient()["chatsync_test"]


@pytest.fixture
def bus():
    return LocalBus()


@pytest.fixture
def unreachable_bus():
    """A bus whose broker refuses subscriptions."""
    broken = Mock()
    broken.publish = AsyncMock()
    broken.subscribe = AsyncMock(side_effect=redis_errors.ConnectionError("Connection refused"))
    return broken


@pytest.fixture
def message_repo(db, bus):
    return MessageRepository(db, bus)


@pytest.fixture
def recent_repo(db, bus):
    return RecentMessageRepository(db, bus)


@pytest.fixture
def user_repo(db):
    return UserRepository(db)


@pytest.fixture
def chat_service(message_repo, recent_repo):
    return ChatService(message_repo, recent_repo)


@pytest.fixture
def alice():
    return ChatUser(uid="alice", email="alice@chatsync.io", profile_image_url="https://chat.test/avatars/alice")


@pytest.fixture
def bob():
    return ChatUser(uid="bob", email="bob@chatsync.io", profile_image_url="https://chat.test/avatars/bob")


@pytest.fixture
def carol():
    return ChatUser(uid="carol", email="carol@chatsync.io")


@pytest.fixture
async def directory(user_repo, alice, bob, carol):
    for user in (alice, bob, carol):
        await user_repo.save_user(user)
    return user_repo


async def _eventually(predicate, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


@pytest.fixture
def eventually():
    """Poll until the bus has delivered what a test is waiting for."""
    return _eventually
