import json
import logging
from fastapi import APIRouter, WebSocket, WebSocketDisconnect, HTTPException
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from chatsync.auth import get_user_from_token
from chatsync.broker.connection import BrokerUnavailableError
from chatsync.database import get_db
from chatsync.models.user import User
from chatsync.repositories.chat_repository import ChatRepository
from chatsync.repositories.message_repository import MessageRepository
from chatsync.schemas.message import MarkReadWebSocket, MessageCreate, SendMessageWebSocket
from chatsync.websocket_manager import manager

logger = logging.getLogger(__name__)

router = APIRouter()

def error_frame(message: str) -> str:
    return json.dumps({"type": "error", "message": message})

@router.websocket("/chat")
async def websocket_chat(websocket: WebSocket, token: str = None):
    if not token:
        await websocket.close(code=1008, reason="Token required")
        return
    
    async for db in get_db():
        try:
            user = await get_user_from_token(token, db)
        except HTTPException:
            await websocket.close(code=1008, reason="Invalid token")
            return
        break
    
    await manager.connect(websocket, user.id)
    
    try:
        while True:
            data = await websocket.receive_text()
            
            try:
                message_data = json.loads(data)
                action = message_data.get("action")
                payload = message_data.get("data", {})
                
                async for db in get_db():
                    await handle_websocket_message(action, payload, user, db, websocket)
                    break
                    
            except json.JSONDecodeError:
                await websocket.send_text(error_frame("Invalid JSON format"))
            except ValidationError as e:
                await websocket.send_text(error_frame(f"Invalid payload: {e.error_count()} errors"))
            except WebSocketDisconnect:
                raise
            except Exception as e:
                logger.exception("[WS] Failed to handle %s for user %s", data[:50], user.id)
                await websocket.send_text(error_frame(f"Error processing message: {str(e)}"))
                
    except WebSocketDisconnect:
        manager.disconnect(websocket, user.id)

async def handle_websocket_message(action: str, payload: dict, user: User, db: AsyncSession, websocket: WebSocket):
    
    if action == "send_message":
        await handle_send_message(payload, user, db, websocket)
    
    elif action == "mark_read":
        await handle_mark_read(payload, user, db, websocket)
    
    elif action == "ping":
        await websocket.send_text(json.dumps({"type": "pong"}))
    
    else:
        await websocket.send_text(error_frame(f"Unknown action: {action}"))

async def handle_send_message(payload: dict, user: User, db: AsyncSession, websocket: WebSocket):
    message_data = SendMessageWebSocket(**payload)
    
    if not await ChatRepository(db).is_member(message_data.chat_id, user.id):
        await websocket.send_text(error_frame("No access to this chat"))
        return
    
    message = await MessageRepository(db).create(
        MessageCreate(
            chat_id=message_data.chat_id,
            text=message_data.text,
            client_message_id=message_data.client_message_id
        ),
        user.id
    )
    
    message_response = {
        "id": message.id,
        "chat_id": message.chat_id,
        "sender_id": message.sender_id,
        "sender_username": user.username,
        "text": message.text,
        "timestamp": message.timestamp.isoformat(),
        "client_message_id": message.client_message_id
    }
    
    # Отправляем всем участникам чата
    await manager.broadcast_new_message(message_response, message.chat_id, user.id)
    
    # Подтверждаем отправителю
    await websocket.send_text(json.dumps({"type": "message_sent", "data": message_response}))

async def handle_mark_read(payload: dict, user: User, db: AsyncSession, websocket: WebSocket):
    """Отметка прочтения уходит в очередь, как и через HTTP"""
    mark_read_data = MarkReadWebSocket(**payload)
    
    if not await ChatRepository(db).is_member(mark_read_data.chat_id, user.id):
        await websocket.send_text(error_frame("No access to this chat"))
        return
    
    publisher = websocket.app.state.read_status_publisher
    try:
        await publisher.publish_read_status(mark_read_data.chat_id, user.id, mark_read_data.message_ids)
    except BrokerUnavailableError:
        logger.error("[WS] Read status dropped, broker unavailable: user=%s", user.id)
        await websocket.send_text(error_frame("Read status temporarily unavailable"))
        return
    
    await websocket.send_text(json.dumps({
        "type": "read_accepted",
        "data": {"chat_id": mark_read_data.chat_id, "message_ids": mark_read_data.message_ids}
    }))
