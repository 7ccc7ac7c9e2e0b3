from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from chatsync.broker.publisher import ReadStatusPublisher
from chatsync.database import get_db
from chatsync.services.message_deletion import MessageDeletionService
from chatsync.websocket_manager import ConnectionManager, manager


def get_read_status_publisher(request: Request) -> ReadStatusPublisher:
    return request.app.state.read_status_publisher


def get_connection_manager() -> ConnectionManager:
    return manager


def get_message_deletion_service(
    db: AsyncSession = Depends(get_db),
    notifier: ConnectionManager = Depends(get_connection_manager),
) -> MessageDeletionService:
    return MessageDeletionService(db, notifier)
