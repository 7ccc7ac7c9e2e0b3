"""
Общее подключение к RabbitMQ для синхронизации статусов прочтения.

Один ``BrokerConnection`` на процесс; он явно передаётся издателю (процесс
API) и потребителю (процесс воркера). Владеет AMQP-соединением, каналом с
подтверждениями публикации и объявленной durable-очередью.

Переподключение: неудачная попытка повторяется ещё ``max_retries`` раз с
фиксированной паузой. Когда попытки исчерпаны, подключение помечается как
исчерпанное и все следующие ``connect()`` сразу падают; процесс
перезапускает супервизор.
"""

import asyncio
import logging
from functools import partial
from typing import Optional

import aio_pika
from aio_pika.abc import AbstractChannel, AbstractConnection, AbstractQueue

from chatsync.config import settings

logger = logging.getLogger(__name__)


class BrokerUnavailableError(RuntimeError):
    """Брокер недоступен в пределах лимита попыток."""


class BrokerConnection:
    def __init__(
        self,
        url: str,
        queue_name: str,
        max_retries: int = 5,
        retry_delay: float = 3.0,
    ) -> None:
        self.url = url
        self.queue_name = queue_name
        self.max_retries = max_retries
        self.retry_delay = retry_delay

        self._connection: Optional[AbstractConnection] = None
        self._channel: Optional[AbstractChannel] = None
        self._queue: Optional[AbstractQueue] = None
        self._closed = asyncio.Event()
        self._closed.set()
        self._lock = asyncio.Lock()
        self._exhausted = False

    @classmethod
    def from_settings(cls) -> "BrokerConnection":
        return cls(
            url=settings.RABBITMQ_URL,
            queue_name=settings.READ_STATUS_QUEUE,
            max_retries=settings.RABBITMQ_MAX_RETRIES,
            retry_delay=settings.RABBITMQ_RETRY_DELAY,
        )

    @property
    def channel(self) -> Optional[AbstractChannel]:
        return self._channel

    @property
    def exhausted(self) -> bool:
        return self._exhausted

    def is_ready(self) -> bool:
        return self._channel is not None and not self._channel.is_closed

    async def connect(self) -> AbstractChannel:
        """
        Соединение, канал с подтверждениями и durable-очередь.

        Конкурентные вызовы ждут уже идущую попытку и получают её канал.

        Raises:
            BrokerUnavailableError: попытки исчерпаны, сейчас или раньше.
        """
        async with self._lock:
            if self.is_ready():
                return self._channel
            if self._exhausted:
                raise BrokerUnavailableError(
                    f"Broker at {self.url} unavailable; reconnect retries already exhausted"
                )
            # канал закрылся, а соединение могло остаться открытым
            await self._reset()

            attempts = self.max_retries + 1
            for attempt in range(1, attempts + 1):
                try:
                    await self._open()
                    logger.info(
                        "[BROKER] Connected, confirm channel established, queue %s declared",
                        self.queue_name,
                    )
                    return self._channel
                except Exception as exc:
                    logger.error(
                        "[BROKER] Connection failed (attempt %s/%s): %s", attempt, attempts, exc
                    )
                    await self._reset()
                    if attempt < attempts:
                        await asyncio.sleep(self.retry_delay)

            self._exhausted = True
            logger.critical("[BROKER] Max retries reached. Giving up on %s", self.url)
            raise BrokerUnavailableError(f"Broker at {self.url} unavailable after {attempts} attempts")

    async def get_queue(self) -> AbstractQueue:
        if not self.is_ready():
            await self.connect()
        return self._queue

    async def wait_closed(self) -> None:
        """Ждёт, пока текущее соединение или его канал не закроется."""
        await self._closed.wait()

    async def invalidate(self, channel: Optional[AbstractChannel] = None) -> None:
        """Сброс канала после ошибки соединения; следующий вызов переподключится.

        Если передан channel, сброс делается только когда он всё ещё текущий:
        канал, открытый заново другой корутиной, не трогаем.
        """
        async with self._lock:
            if channel is not None and channel is not self._channel:
                return
            logger.warning("[BROKER] Channel invalidated, will reconnect on next use")
            await self._reset()

    async def close(self) -> None:
        async with self._lock:
            await self._reset()
            logger.info("[BROKER] Connection closed")

    @staticmethod
    def _on_closed(closed: asyncio.Event, *args) -> None:
        if not closed.is_set():
            logger.warning("[BROKER] Connection to broker lost")
        closed.set()

    async def _open(self) -> None:
        # у каждого соединения своё событие: поздний колбэк старого не будит новое
        closed = asyncio.Event()
        on_closed = partial(self._on_closed, closed)
        self._closed = closed
        self._connection = await aio_pika.connect(self.url)
        self._connection.close_callbacks.add(on_closed)
        self._channel = await self._connection.channel(publisher_confirms=True)
        self._channel.close_callbacks.add(on_closed)
        self._queue = await self._channel.declare_queue(self.queue_name, durable=True)

    async def _reset(self) -> None:
        connection = self._connection
        self._connection = None
        self._channel = None
        self._queue = None
        self._closed.set()
        if connection is not None and not connection.is_closed:
            try:
                await connection.close()
            except Exception as exc:
                logger.debug("[BROKER] Error while closing stale connection: %s", exc)
