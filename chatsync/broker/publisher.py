import logging
from datetime import datetime
from typing import Optional, Sequence

import aio_pika
from aio_pika.exceptions import DeliveryError

from chatsync.broker.connection import BrokerConnection
from chatsync.models.base import utcnow
from chatsync.schemas.message import ReadStatusEvent

logger = logging.getLogger(__name__)


class ReadStatusPublisher:
    """Передаёт события прочтения в durable-очередь.

    Отрицательное подтверждение брокера только логируется: запрос отметки
    прочтения не должен падать из-за сбоя брокера. Ошибки до того, как брокер
    принял сообщение (нет канала, соединение закрыто), пробрасываются.
    """

    def __init__(self, connection: BrokerConnection):
        self.connection = connection

    async def publish(self, event: ReadStatusEvent) -> None:
        if self.connection.is_ready():
            channel = self.connection.channel
        else:
            channel = await self.connection.connect()

        message = aio_pika.Message(
            body=event.to_wire(),
            content_type="application/json",
            delivery_mode=aio_pika.DeliveryMode.PERSISTENT,
        )

        try:
            await channel.default_exchange.publish(message, routing_key=self.connection.queue_name)
        except DeliveryError as exc:
            logger.error(
                "[PUBLISHER] Message publish not confirmed: room=%s user=%s messages=%s (%s)",
                event.room_id, event.user_id, len(event.message_ids), exc,
            )
            return
        except Exception:
            logger.exception("[PUBLISHER] Publish error")
            await self.connection.invalidate(channel)
            raise

        logger.debug(
            "[PUBLISHER] Read status queued: room=%s user=%s messages=%s",
            event.room_id, event.user_id, len(event.message_ids),
        )

    async def publish_read_status(
        self,
        room_id: str,
        user_id: str,
        message_ids: Sequence[str],
        read_at: Optional[datetime] = None,
    ) -> ReadStatusEvent:
        event = ReadStatusEvent(
            room_id=room_id,
            user_id=user_id,
            message_ids=list(message_ids),
            read_at=read_at or utcnow(),
        )
        await self.publish(event)
        return event
