from datetime import datetime
from typing import Optional, List, Sequence, Tuple
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, and_, delete, exists, literal, String, DateTime
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import joinedload

from chatsync.models.base import as_naive_utc, utcnow
from chatsync.models.message import Message
from chatsync.models.message_read_receipt import MessageReadReceipt
from chatsync.models.message_local_deletion import MessageLocalDeletion
from chatsync.schemas.message import MessageCreate

class MessageRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    def _insert(self, table):
        """INSERT с поддержкой ON CONFLICT для текущего диалекта"""
        if self.db.bind.dialect.name == "postgresql":
            return pg_insert(table)
        return sqlite_insert(table)

    async def create(self, message_data: MessageCreate, sender_id: str) -> Message:
        """Создание нового сообщения с проверкой на дублирование"""
        if message_data.client_message_id:
            existing_message = await self.get_by_client_id(
                message_data.client_message_id,
                sender_id,
                message_data.chat_id
            )
            if existing_message:
                return existing_message

        message = Message(
            chat_id=message_data.chat_id,
            sender_id=sender_id,
            text=message_data.text,
            file_id=message_data.file_id,
            client_message_id=message_data.client_message_id
        )
        self.db.add(message)
        await self.db.commit()
        await self.db.refresh(message, attribute_names=["sender"])
        return message

    async def get_by_id(self, message_id: str) -> Optional[Message]:
        """Получение сообщения по ID"""
        result = await self.db.execute(
            select(Message).options(
                joinedload(Message.sender)
            ).where(Message.id == message_id)
        )
        return result.scalar_one_or_none()

    async def get_by_client_id(self, client_message_id: str, sender_id: str, chat_id: str) -> Optional[Message]:
        """Поиск сообщения по client_message_id для предотвращения дублирования"""
        result = await self.db.execute(
            select(Message).options(
                joinedload(Message.sender)
            ).where(
                and_(
                    Message.client_message_id == client_message_id,
                    Message.sender_id == sender_id,
                    Message.chat_id == chat_id
                )
            )
        )
        return result.scalar_one_or_none()

    async def get_chat_messages(
        self,
        chat_id: str,
        viewer_id: str,
        before: Optional[datetime] = None,
        limit: int = 30
    ) -> Tuple[List[Message], bool]:
        """Сообщения чата для viewer_id: последние limit штук до before, по возрастанию времени.

        Сообщения, которые viewer_id удалил у себя, не возвращаются.
        """
        hidden_for_viewer = exists().where(
            and_(
                MessageLocalDeletion.message_id == Message.id,
                MessageLocalDeletion.user_id == viewer_id
            )
        )
        query = select(Message).options(
            joinedload(Message.sender)
        ).where(
            and_(Message.chat_id == chat_id, ~hidden_for_viewer)
        )
        if before is not None:
            query = query.where(Message.timestamp < as_naive_utc(before))

        result = await self.db.execute(
            query.order_by(Message.timestamp.desc(), Message.id.desc()).limit(limit + 1)
        )
        messages = list(result.scalars().all())

        has_more = len(messages) > limit
        messages = messages[:limit]
        messages.reverse()
        return messages, has_more

    async def mark_messages_read(self, message_ids: Sequence[str], user_id: str, read_at: datetime) -> int:
        """Отметка сообщений как прочитанных одним атомарным запросом.

        Запись добавляется, только если у сообщения ещё нет отметки от user_id.
        Несуществующие (удалённые) сообщения пропускаются. Возвращает число новых отметок.
        """
        ids = list(dict.fromkeys(message_ids))
        if not ids:
            return 0

        source = select(
            Message.id,
            literal(user_id, type_=String()),
            literal(read_at, type_=DateTime()),
        ).where(Message.id.in_(ids))

        stmt = self._insert(MessageReadReceipt).from_select(
            ["message_id", "user_id", "read_at"], source
        ).on_conflict_do_nothing(index_elements=["message_id", "user_id"])

        result = await self.db.execute(stmt)
        await self.db.commit()
        return max(result.rowcount or 0, 0)

    async def get_message_read_receipts(self, message_id: str) -> List[MessageReadReceipt]:
        """Получение списка пользователей, прочитавших сообщение"""
        result = await self.db.execute(
            select(MessageReadReceipt).options(
                joinedload(MessageReadReceipt.user)
            ).where(MessageReadReceipt.message_id == message_id)
            .order_by(MessageReadReceipt.read_at.asc())
        )
        return list(result.scalars().all())

    async def hide_for_user(self, message_id: str, user_id: str) -> bool:
        """Скрытие сообщения только для user_id. False, если оно уже было скрыто"""
        stmt = self._insert(MessageLocalDeletion).values(
            message_id=message_id,
            user_id=user_id,
            deleted_at=utcnow()
        ).on_conflict_do_nothing(index_elements=["message_id", "user_id"])

        result = await self.db.execute(stmt)
        await self.db.commit()
        return (result.rowcount or 0) > 0

    async def get_hidden_for(self, message_id: str) -> List[str]:
        """Пользователи, у которых сообщение скрыто"""
        result = await self.db.execute(
            select(MessageLocalDeletion.user_id).where(MessageLocalDeletion.message_id == message_id)
        )
        return list(result.scalars().all())

    async def delete(self, message_id: str) -> bool:
        """Удаление сообщения для всех вместе с отметками о прочтении и скрытии"""
        await self.db.execute(
            delete(MessageReadReceipt).where(MessageReadReceipt.message_id == message_id)
        )
        await self.db.execute(
            delete(MessageLocalDeletion).where(MessageLocalDeletion.message_id == message_id)
        )
        result = await self.db.execute(delete(Message).where(Message.id == message_id))
        await self.db.commit()
        return (result.rowcount or 0) > 0
