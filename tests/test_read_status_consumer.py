import asyncio
import json
from datetime import datetime
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from chatsync.broker.connection import BrokerUnavailableError
from chatsync.broker.consumer import ReadStatusConsumer
from chatsync.repositories.message_repository import MessageRepository

READ_AT = "2026-10-19T12:00:00"


class FakeDelivery:
    def __init__(self, body, redelivered=False):
        self.body = body if isinstance(body, bytes) else json.dumps(body).encode()
        self.redelivered = redelivered
        self.acked = False
        self.nacked = False
        self.requeue = None

    async def ack(self):
        self.acked = True

    async def nack(self, requeue=True):
        self.nacked = True
        self.requeue = requeue


def event_body(room, message_ids, user=None):
    return {
        "roomId": room.chat.id,
        "userId": (user or room.bob).id,
        "messageIds": message_ids,
        "readAt": READ_AT,
    }


@pytest.fixture
def consumer(session_factory):
    return ReadStatusConsumer(SimpleNamespace(queue_name="read_status_sync"), session_factory=session_factory)


async def receipts_for(session_factory, message_id):
    async with session_factory() as session:
        return await MessageRepository(session).get_message_read_receipts(message_id)


@pytest.mark.asyncio
async def test_valid_event_is_applied_and_acked(consumer, session_factory, room, make_message):
    message = await make_message(room.chat, room.alice)
    delivery = FakeDelivery(event_body(room, [message.id]))

    await consumer.handle_delivery(delivery)

    assert delivery.acked and not delivery.nacked
    receipts = await receipts_for(session_factory, message.id)
    assert [(r.user_id, r.read_at) for r in receipts] == [(room.bob.id, datetime(2026, 10, 19, 12, 0, 0))]


@pytest.mark.asyncio
async def test_same_event_delivered_many_times_gives_one_entry(consumer, session_factory, room, make_message):
    message = await make_message(room.chat, room.alice)

    for redelivered in (False, True, True):
        delivery = FakeDelivery(event_body(room, [message.id, message.id]), redelivered=redelivered)
        await consumer.handle_delivery(delivery)
        assert delivery.acked

    assert len(await receipts_for(session_factory, message.id)) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "mutate",
    [
        lambda body: body.update(messageIds=[]),
        lambda body: body.pop("userId"),
        lambda body: body.pop("roomId"),
        lambda body: body.update(messageIds="not-a-list"),
    ],
)
async def test_poison_message_is_acked_without_mutation(consumer, session_factory, room, make_message, mutate):
    message = await make_message(room.chat, room.alice)
    body = event_body(room, [message.id])
    mutate(body)
    delivery = FakeDelivery(body)

    await consumer.handle_delivery(delivery)

    assert delivery.acked and not delivery.nacked
    assert await receipts_for(session_factory, message.id) == []


@pytest.mark.asyncio
async def test_unparseable_body_is_acked(consumer):
    delivery = FakeDelivery(b"\x00garbage")

    await consumer.handle_delivery(delivery)

    assert delivery.acked and not delivery.nacked


@pytest.mark.asyncio
async def test_deleted_messages_are_skipped(consumer, session_factory, room, make_message):
    kept = await make_message(room.chat, room.alice)
    gone = await make_message(room.chat, room.alice)
    gone_id = gone.id
    async with session_factory() as session:
        await MessageRepository(session).delete(gone_id)

    delivery = FakeDelivery(event_body(room, [gone_id, kept.id]))
    await consumer.handle_delivery(delivery)

    assert delivery.acked
    assert len(await receipts_for(session_factory, kept.id)) == 1
    assert await receipts_for(session_factory, gone_id) == []


@pytest.mark.asyncio
async def test_store_failure_nacks_for_redelivery(consumer, session_factory, room, make_message, monkeypatch):
    message = await make_message(room.chat, room.alice)
    monkeypatch.setattr(
        MessageRepository, "mark_messages_read", AsyncMock(side_effect=ConnectionError("store down"))
    )
    delivery = FakeDelivery(event_body(room, [message.id]))

    await consumer.handle_delivery(delivery)

    assert delivery.nacked and delivery.requeue is True
    assert not delivery.acked


@pytest.mark.asyncio
async def test_redelivery_after_nack_applies_once(consumer, session_factory, room, make_message, monkeypatch):
    message = await make_message(room.chat, room.alice)
    body = event_body(room, [message.id])
    original = MessageRepository.mark_messages_read

    async def crash_after_write(self, message_ids, user_id, read_at):
        await original(self, message_ids, user_id, read_at)
        raise RuntimeError("worker crashed before ack")

    monkeypatch.setattr(MessageRepository, "mark_messages_read", crash_after_write)
    first = FakeDelivery(body)
    await consumer.handle_delivery(first)
    assert first.nacked

    monkeypatch.setattr(MessageRepository, "mark_messages_read", original)
    retry = FakeDelivery(body, redelivered=True)
    await consumer.handle_delivery(retry)

    assert retry.acked
    assert len(await receipts_for(session_factory, message.id)) == 1


class StubBroker:
    """Подключение, которое теряется ``losses`` раз, затем либо держится, либо исчерпано."""

    def __init__(self, losses=0, exhausted_after=None):
        self.queue_name = "read_status_sync"
        self.queue = SimpleNamespace(consume=AsyncMock(return_value="ctag"), cancel=AsyncMock())
        self.channel = SimpleNamespace(set_qos=AsyncMock())
        self.losses = losses
        self.exhausted_after = exhausted_after
        self.connects = 0
        self.ready = False

    async def connect(self):
        self.connects += 1
        if self.exhausted_after is not None and self.connects > self.exhausted_after:
            raise BrokerUnavailableError("retries exhausted")
        self.ready = True
        return self.channel

    async def get_queue(self):
        return self.queue

    def is_ready(self):
        return self.ready

    async def wait_closed(self):
        if self.losses:
            self.losses -= 1
            self.ready = False
            return
        await asyncio.Event().wait()


@pytest.mark.asyncio
async def test_run_consumes_with_manual_ack_and_prefetch_one():
    connection = StubBroker()
    consumer = ReadStatusConsumer(connection)

    task = asyncio.create_task(consumer.run())
    for _ in range(5):
        await asyncio.sleep(0)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert connection.connects == 1
    connection.channel.set_qos.assert_awaited_once_with(prefetch_count=1)
    connection.queue.consume.assert_awaited_once_with(consumer.handle_delivery, no_ack=False)
    connection.queue.cancel.assert_awaited_once_with("ctag")


@pytest.mark.asyncio
async def test_run_resubscribes_after_connection_loss():
    connection = StubBroker(losses=2)
    consumer = ReadStatusConsumer(connection)

    task = asyncio.create_task(consumer.run())
    for _ in range(10):
        await asyncio.sleep(0)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert connection.connects == 3
    assert connection.queue.consume.await_count == 3
    assert connection.channel.set_qos.await_count == 3
    # после потери соединения потребитель не отменяется на мёртвом канале
    connection.queue.cancel.assert_awaited_once_with("ctag")


@pytest.mark.asyncio
async def test_run_raises_when_reconnect_is_exhausted():
    connection = StubBroker(losses=1, exhausted_after=1)
    consumer = ReadStatusConsumer(connection)

    with pytest.raises(BrokerUnavailableError):
        await asyncio.wait_for(consumer.run(), timeout=1)

    assert connection.connects == 2
    connection.queue.consume.assert_awaited_once()
    connection.queue.cancel.assert_not_awaited()
