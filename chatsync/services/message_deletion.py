"""
Удаление сообщений.

Запрос на удаление от отправителя либо удаляет сообщение у всех
(``global``), либо скрывает его только у отправителя (``local``), в
зависимости от возраста сообщения в момент запроса:

    возраст <= порога  -> global: строка удалена, комната уведомлена
    возраст >  порога  -> local:  отправитель в списке скрывших, уведомлён только он

Возраст считается от неизменяемого времени создания, один раз на запрос.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Optional, Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from chatsync.config import settings
from chatsync.exceptions import ForbiddenException, NotFoundException
from chatsync.models.base import utcnow
from chatsync.repositories.chat_repository import ChatRepository
from chatsync.repositories.message_repository import MessageRepository

logger = logging.getLogger(__name__)

MESSAGE_DELETED_EVENT = "messageDeleted"


class DeleteType(str, Enum):
    GLOBAL = "global"
    LOCAL = "local"


class RealtimeNotifier(Protocol):
    async def emit_to_room(self, chat_id: str, event_type: str, data: dict) -> None: ...

    async def emit_to_user(self, user_id: str, event_type: str, data: dict) -> None: ...


@dataclass(frozen=True)
class DeletionResult:
    message_id: str
    delete_type: DeleteType


def default_threshold() -> timedelta:
    return timedelta(milliseconds=settings.DELETE_AGE_THRESHOLD_MS)


def classify(now: datetime, created_at: datetime, threshold: Optional[timedelta] = None) -> DeleteType:
    if threshold is None:
        threshold = default_threshold()
    if now - created_at <= threshold:
        return DeleteType.GLOBAL
    return DeleteType.LOCAL


class MessageDeletionService:
    def __init__(
        self,
        db: AsyncSession,
        notifier: RealtimeNotifier,
        threshold: Optional[timedelta] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.message_repo = MessageRepository(db)
        self.chat_repo = ChatRepository(db)
        self.notifier = notifier
        self.threshold = threshold if threshold is not None else default_threshold()
        self.clock = clock

    async def delete_message(self, message_id: str, user_id: str) -> DeletionResult:
        message = await self.message_repo.get_by_id(message_id)
        if not message:
            raise NotFoundException("Сообщение не найдено", code="MESSAGE_NOT_FOUND")

        if message.sender_id != user_id:
            raise ForbiddenException("Можно удалять только свои сообщения", code="NOT_MESSAGE_SENDER")

        if not await self.chat_repo.is_member(message.chat_id, user_id):
            raise ForbiddenException("Нет доступа к этому чату", code="NOT_CHAT_MEMBER")

        chat_id = message.chat_id
        delete_type = classify(self.clock(), message.timestamp, self.threshold)
        payload = {
            "messageId": message_id,
            "deletedBy": user_id,
            "deleteType": delete_type.value,
        }

        if delete_type is DeleteType.GLOBAL:
            if not await self.message_repo.delete(message_id):
                # удалено параллельным запросом
                raise NotFoundException("Сообщение не найдено", code="MESSAGE_NOT_FOUND")
            logger.info("[DELETE] Message %s deleted for everyone by %s", message_id, user_id)
            await self.notifier.emit_to_room(chat_id, MESSAGE_DELETED_EVENT, payload)
        else:
            added = await self.message_repo.hide_for_user(message_id, user_id)
            logger.info(
                "[DELETE] Message %s hidden for %s%s", message_id, user_id, "" if added else " (already hidden)"
            )
            await self.notifier.emit_to_user(user_id, MESSAGE_DELETED_EVENT, payload)

        return DeletionResult(message_id=message_id, delete_type=delete_type)
