import json
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from pydantic import ValidationError

from chatsync.api.v1.websocket import handle_websocket_message
from chatsync.broker.connection import BrokerUnavailableError


class StubSocket:
    def __init__(self, publisher):
        self.app = SimpleNamespace(state=SimpleNamespace(read_status_publisher=publisher))
        self.frames = []

    async def send_text(self, text):
        self.frames.append(json.loads(text))


@pytest.mark.asyncio
async def test_mark_read_action_publishes(db, room):
    publisher = AsyncMock()
    socket = StubSocket(publisher)

    await handle_websocket_message(
        "mark_read", {"chat_id": room.chat.id, "message_ids": ["m1", "m2"]}, room.bob, db, socket
    )

    publisher.publish_read_status.assert_awaited_once_with(room.chat.id, room.bob.id, ["m1", "m2"])
    assert socket.frames[-1]["type"] == "read_accepted"


@pytest.mark.asyncio
async def test_mark_read_action_outside_room_is_refused(db, room):
    publisher = AsyncMock()
    socket = StubSocket(publisher)

    await handle_websocket_message(
        "mark_read", {"chat_id": room.chat.id, "message_ids": ["m1"]}, room.dave, db, socket
    )

    publisher.publish_read_status.assert_not_awaited()
    assert socket.frames == [{"type": "error", "message": "No access to this chat"}]


@pytest.mark.asyncio
async def test_mark_read_action_reports_unavailable_broker(db, room):
    publisher = AsyncMock()
    publisher.publish_read_status.side_effect = BrokerUnavailableError("gave up")
    socket = StubSocket(publisher)

    await handle_websocket_message(
        "mark_read", {"chat_id": room.chat.id, "message_ids": ["m1"]}, room.bob, db, socket
    )

    assert socket.frames[-1]["type"] == "error"


@pytest.mark.asyncio
async def test_mark_read_action_validates_payload(db, room):
    with pytest.raises(ValidationError):
        await handle_websocket_message(
            "mark_read", {"chat_id": room.chat.id, "message_ids": []}, room.bob, db, StubSocket(AsyncMock())
        )


@pytest.mark.asyncio
async def test_ping_and_unknown_action(db, room):
    socket = StubSocket(AsyncMock())

    await handle_websocket_message("ping", {}, room.bob, db, socket)
    await handle_websocket_message("dance", {}, room.bob, db, socket)

    assert socket.frames == [
        {"type": "pong"},
        {"type": "error", "message": "Unknown action: dance"},
    ]
