"""
Потребитель статусов прочтения.

Забирает события из durable-очереди ``read_status_sync`` по одному и
записывает отметки о прочтении в хранилище сообщений.

Правила подтверждения:
- некорректный payload        -> ack и отбросить (повтор никогда не поможет)
- отметки записаны            -> ack
- ошибка хранилища/обработки  -> nack с requeue (повторная доставка, возможно другому экземпляру)

Запись отметок идемпотентна для пары (сообщение, пользователь), поэтому
повторная доставка и дубликаты id внутри одного события безвредны.

При потере соединения потребитель переподключается через
``BrokerConnection.connect()``; когда лимит попыток исчерпан, ``run()``
завершается с ``BrokerUnavailableError``.
"""

import logging
from typing import Callable

from aio_pika.abc import AbstractIncomingMessage
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from chatsync.broker.connection import BrokerConnection
from chatsync.database import AsyncSessionLocal
from chatsync.repositories.message_repository import MessageRepository
from chatsync.schemas.message import ReadStatusEvent

logger = logging.getLogger(__name__)


class ReadStatusConsumer:
    def __init__(
        self,
        connection: BrokerConnection,
        session_factory: Callable[[], AsyncSession] = AsyncSessionLocal,
    ):
        self.connection = connection
        self.session_factory = session_factory

    async def run(self) -> None:
        """Обработка очереди до отмены или исчерпания попыток переподключения."""
        while True:
            channel = await self.connection.connect()
            await channel.set_qos(prefetch_count=1)
            queue = await self.connection.get_queue()
            consumer_tag = await queue.consume(self.handle_delivery, no_ack=False)
            logger.info("[WORKER] Waiting for messages on %s", self.connection.queue_name)

            try:
                await self.connection.wait_closed()
            finally:
                if self.connection.is_ready():
                    await queue.cancel(consumer_tag)

            logger.warning("[WORKER] Broker connection lost, reconnecting")

    async def handle_delivery(self, message: AbstractIncomingMessage) -> None:
        try:
            event = ReadStatusEvent.model_validate_json(message.body)
        except ValidationError as exc:
            logger.warning(
                "[WORKER] Invalid read status payload dropped: %r (%s errors)",
                message.body[:200], exc.error_count(),
            )
            await message.ack()
            return

        logger.info(
            "[WORKER] Received - roomId=%s, userId=%s, messageCount=%s, redelivered=%s",
            event.room_id, event.user_id, len(event.message_ids), message.redelivered,
        )

        try:
            updated = await self.apply(event)
        except Exception:
            logger.exception("[WORKER] Failed to apply read status, requeueing: userId=%s", event.user_id)
            await message.nack(requeue=True)
            return

        logger.info(
            "[WORKER] Read status applied - userId=%s, newReceipts=%s", event.user_id, updated
        )
        await message.ack()

    async def apply(self, event: ReadStatusEvent) -> int:
        async with self.session_factory() as db:
            return await MessageRepository(db).mark_messages_read(
                event.unique_message_ids, event.user_id, event.read_at
            )
