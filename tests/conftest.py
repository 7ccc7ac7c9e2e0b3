from datetime import timedelta
from types import SimpleNamespace

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from chatsync.database import create_tables
from chatsync.models.base import utcnow
from chatsync.models.message import Message
from chatsync.models.user import User
from chatsync.repositories.chat_repository import ChatRepository


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'chatsync.db'}")
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def room(db):
    """Group chat with alice, bob and carol; dave exists but is not a member."""
    users = {name: User(username=name, email=f"{name}@example.com") for name in ("alice", "bob", "carol", "dave")}
    db.add_all(users.values())
    await db.commit()

    chat = await ChatRepository(db).create_group_chat(
        users["alice"].id, "general", [users["bob"].id, users["carol"].id]
    )
    return SimpleNamespace(chat=chat, **users)


@pytest.fixture
def make_message(db):
    async def _make(chat, sender, age=timedelta(0), text="hello"):
        message = Message(chat_id=chat.id, sender_id=sender.id, text=text, timestamp=utcnow() - age)
        db.add(message)
        await db.commit()
        return message

    return _make


class RecordingNotifier:
    def __init__(self):
        self.room_events = []
        self.user_events = []

    async def emit_to_room(self, chat_id, event_type, data, exclude_user_id=None):
        self.room_events.append((chat_id, event_type, data))

    async def emit_to_user(self, user_id, event_type, data):
        self.user_events.append((user_id, event_type, data))


@pytest.fixture
def notifier():
    return RecordingNotifier()
