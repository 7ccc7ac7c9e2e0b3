from typing import List
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, and_

from chatsync.models.chat import Chat, ChatType
from chatsync.models.chat_member import ChatMember

class ChatRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_group_chat(self, creator_id: str, name: str, member_ids: List[str]) -> Chat:
        """Создание группового чата"""
        chat = Chat(
            name=name,
            chat_type=ChatType.GROUP,
            creator_id=creator_id
        )
        self.db.add(chat)
        await self.db.flush()

        # Добавляем создателя как администратора
        creator_member = ChatMember(chat_id=chat.id, user_id=creator_id, is_admin=True)
        self.db.add(creator_member)

        # Добавляем остальных участников
        for member_id in member_ids:
            if member_id != creator_id:  # Избегаем дублирования создателя
                member = ChatMember(chat_id=chat.id, user_id=member_id, is_admin=False)
                self.db.add(member)

        await self.db.commit()
        await self.db.refresh(chat)
        return chat

    async def remove_member(self, chat_id: str, user_id: str) -> bool:
        """Удаление участника из чата"""
        result = await self.db.execute(
            select(ChatMember).where(
                and_(ChatMember.chat_id == chat_id, ChatMember.user_id == user_id)
            )
        )
        member = result.scalar_one_or_none()
        if not member:
            return False

        await self.db.delete(member)
        await self.db.commit()
        return True

    async def is_member(self, chat_id: str, user_id: str) -> bool:
        """Проверка, является ли пользователь участником чата"""
        result = await self.db.execute(
            select(ChatMember.id).where(
                and_(ChatMember.chat_id == chat_id, ChatMember.user_id == user_id)
            )
        )
        return result.scalar_one_or_none() is not None

    async def get_member_ids(self, chat_id: str) -> List[str]:
        """ID всех участников чата"""
        result = await self.db.execute(
            select(ChatMember.user_id).where(ChatMember.chat_id == chat_id)
        )
        return list(result.scalars().all())
