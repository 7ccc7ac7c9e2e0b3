from datetime import datetime
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.ext.asyncio import AsyncSession

from chatsync.auth import get_current_active_user
from chatsync.broker.connection import BrokerUnavailableError
from chatsync.broker.publisher import ReadStatusPublisher
from chatsync.database import get_db
from chatsync.dependencies import (
    get_connection_manager,
    get_message_deletion_service,
    get_read_status_publisher,
)
from chatsync.models.message import Message
from chatsync.models.user import User
from chatsync.repositories.chat_repository import ChatRepository
from chatsync.repositories.message_repository import MessageRepository
from chatsync.schemas.message import (
    DeleteMessageResponse,
    MarkMessagesRead,
    MessageCreate,
    MessageHistoryResponse,
    MessageResponse,
)
from chatsync.services.message_deletion import MessageDeletionService
from chatsync.websocket_manager import ConnectionManager

router = APIRouter()

def serialize_message(message: Message) -> dict:
    return {
        "id": message.id,
        "chat_id": message.chat_id,
        "sender_id": message.sender_id,
        "sender_username": message.sender.username if message.sender else None,
        "text": message.text,
        "file_id": message.file_id,
        "timestamp": message.timestamp,
        "client_message_id": message.client_message_id
    }

@router.get("/history/{chat_id}", response_model=MessageHistoryResponse)
async def get_chat_history(
    chat_id: str,
    before: Optional[datetime] = Query(None),
    limit: int = Query(30, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """История чата без сообщений, скрытых текущим пользователем"""
    chat_repo = ChatRepository(db)
    message_repo = MessageRepository(db)
    
    if not await chat_repo.is_member(chat_id, current_user.id):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Нет доступа к этому чату")
    
    messages, has_more = await message_repo.get_chat_messages(chat_id, current_user.id, before, limit)
    
    return {
        "messages": [serialize_message(msg) for msg in messages],
        "has_more": has_more,
        "oldest_timestamp": messages[0].timestamp if messages else None
    }

@router.post("/", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
async def send_message(
    message_data: MessageCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
    notifier: ConnectionManager = Depends(get_connection_manager)
):
    """Отправка сообщения в чат"""
    chat_repo = ChatRepository(db)
    message_repo = MessageRepository(db)
    
    # Проверяем, является ли пользователь участником чата
    if not await chat_repo.is_member(message_data.chat_id, current_user.id):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Нет доступа к этому чату"
        )
    
    # Создаем сообщение (с проверкой дублирования)
    message = await message_repo.create(message_data, current_user.id)
    
    message_response = serialize_message(message)
    message_response["sender_username"] = current_user.username
    
    # Отправляем через WebSocket всем участникам чата
    await notifier.broadcast_new_message(
        {**message_response, "timestamp": message.timestamp.isoformat()},
        message.chat_id,
        current_user.id
    )
    
    return message_response

@router.post("/read", status_code=status.HTTP_202_ACCEPTED)
async def mark_messages_read(
    read_data: MarkMessagesRead,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
    publisher: ReadStatusPublisher = Depends(get_read_status_publisher)
):
    """Отметка сообщений как прочитанных; запись в базу делает воркер очереди"""
    chat_repo = ChatRepository(db)
    
    if not await chat_repo.is_member(read_data.chat_id, current_user.id):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Нет доступа к этому чату"
        )
    
    try:
        await publisher.publish_read_status(read_data.chat_id, current_user.id, read_data.message_ids)
    except BrokerUnavailableError:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Сервис отметок о прочтении временно недоступен"
        )
    
    return {"status": "accepted"}

@router.delete("/{message_id}", response_model=DeleteMessageResponse)
async def delete_message(
    message_id: str,
    current_user: User = Depends(get_current_active_user),
    deletion_service: MessageDeletionService = Depends(get_message_deletion_service)
):
    """Удаление сообщения: для всех, если оно свежее, иначе только у себя"""
    result = await deletion_service.delete_message(message_id, current_user.id)
    return {"message_id": result.message_id, "delete_type": result.delete_type.value}

@router.get("/{message_id}/read-receipts")
async def get_message_read_receipts(
    message_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """Получение списка пользователей, прочитавших сообщение"""
    message_repo = MessageRepository(db)
    chat_repo = ChatRepository(db)
    
    message = await message_repo.get_by_id(message_id)
    if not message:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Сообщение не найдено"
        )
    
    if not await chat_repo.is_member(message.chat_id, current_user.id):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Нет доступа к этому чату"
        )
    
    receipts = await message_repo.get_message_read_receipts(message_id)
    
    result = [
        {
            "user_id": receipt.user_id,
            "username": receipt.user.username if receipt.user else None,
            "read_at": receipt.read_at
        }
        for receipt in receipts
    ]
    
    return {"read_by": result}
