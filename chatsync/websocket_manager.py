import json
import asyncio
import logging
from typing import Callable, Dict, List, Optional

from fastapi import WebSocket
from sqlalchemy.ext.asyncio import AsyncSession

from chatsync.config import settings
from chatsync.database import AsyncSessionLocal, get_redis
from chatsync.repositories.chat_repository import ChatRepository

logger = logging.getLogger(__name__)

ROOM_SCOPE = "room"
USER_SCOPE = "user"

class ConnectionManager:
    """Websocket-соединения этого процесса и Redis-ретранслятор между процессами API.

    emit_to_room/emit_to_user публикуют конверт в канал ретранслятора; каждый
    процесс (включая этот) получает его и доставляет своим сокетам.
    Без ретранслятора конверт доставляется только локально.
    """

    def __init__(self, session_factory: Callable[[], AsyncSession] = AsyncSessionLocal):
        self.active_connections: Dict[str, List[WebSocket]] = {}
        self.session_factory = session_factory
        self.channel_name = settings.REALTIME_CHANNEL
        self.redis_client = None
        self._relay_task: Optional[asyncio.Task] = None

    async def connect(self, websocket: WebSocket, user_id: str):
        await websocket.accept()
        self.active_connections.setdefault(user_id, []).append(websocket)

    def disconnect(self, websocket: WebSocket, user_id: str):
        connections = self.active_connections.get(user_id)
        if not connections:
            return
        if websocket in connections:
            connections.remove(websocket)
        if not connections:
            del self.active_connections[user_id]

    async def send_personal_message(self, message: str, user_id: str):
        disconnected_connections = []
        for connection in list(self.active_connections.get(user_id, [])):
            try:
                await connection.send_text(message)
            except Exception as exc:
                logger.debug("[REALTIME] Dropping dead socket of user %s: %s", user_id, exc)
                disconnected_connections.append(connection)

        for connection in disconnected_connections:
            self.disconnect(connection, user_id)

    async def broadcast_to_chat(self, message: str, chat_id: str, exclude_user_id: Optional[str] = None):
        async with self.session_factory() as db:
            member_ids = await ChatRepository(db).get_member_ids(chat_id)

        for member_id in member_ids:
            if exclude_user_id and member_id == exclude_user_id:
                continue
            await self.send_personal_message(message, member_id)

    async def emit_to_room(self, chat_id: str, event_type: str, data: dict, exclude_user_id: Optional[str] = None):
        await self._dispatch({
            "scope": ROOM_SCOPE,
            "target": chat_id,
            "exclude": exclude_user_id,
            "message": {"type": event_type, "data": data},
        })

    async def emit_to_user(self, user_id: str, event_type: str, data: dict):
        await self._dispatch({
            "scope": USER_SCOPE,
            "target": user_id,
            "message": {"type": event_type, "data": data},
        })

    async def broadcast_new_message(self, message_data: dict, chat_id: str, sender_id: str):
        await self.emit_to_room(chat_id, "new_message", message_data, exclude_user_id=sender_id)

    async def deliver(self, envelope: dict):
        """Доставка конверта сокетам этого процесса"""
        text = json.dumps(envelope["message"], default=str)
        if envelope["scope"] == ROOM_SCOPE:
            await self.broadcast_to_chat(text, envelope["target"], envelope.get("exclude"))
        elif envelope["scope"] == USER_SCOPE:
            await self.send_personal_message(text, envelope["target"])
        else:
            logger.warning("[REALTIME] Unknown envelope scope: %s", envelope.get("scope"))

    async def _dispatch(self, envelope: dict):
        # ошибки realtime-доставки не доходят до вызывающего
        if self.redis_client is not None:
            try:
                await self.redis_client.publish(self.channel_name, json.dumps(envelope, default=str))
                return
            except Exception as exc:
                logger.warning("[REALTIME] Relay publish failed, delivering locally: %s", exc)

        try:
            await self.deliver(envelope)
        except Exception:
            logger.exception("[REALTIME] Local delivery failed")

    async def start_relay(self):
        try:
            self.redis_client = await get_redis()
            await self.redis_client.ping()
        except Exception as exc:
            logger.warning("[REALTIME] Redis unavailable, realtime events stay in this process: %s", exc)
            self.redis_client = None
            return

        self._relay_task = asyncio.create_task(self._relay_loop())
        logger.info("[REALTIME] Relay subscribed to %s", self.channel_name)

    async def stop_relay(self):
        if self._relay_task is not None:
            self._relay_task.cancel()
            try:
                await self._relay_task
            except asyncio.CancelledError:
                pass
            self._relay_task = None

        if self.redis_client is not None:
            await self.redis_client.aclose()
            self.redis_client = None

    async def _relay_loop(self):
        pubsub = self.redis_client.pubsub()
        await pubsub.subscribe(self.channel_name)
        try:
            async for item in pubsub.listen():
                if item.get("type") != "message":
                    continue
                try:
                    await self.deliver(json.loads(item["data"]))
                except Exception:
                    logger.exception("[REALTIME] Failed to deliver relayed event")
        finally:
            await pubsub.unsubscribe(self.channel_name)
            await pubsub.aclose()

    def get_connected_users(self) -> List[str]:
        return list(self.active_connections.keys())

    def is_user_online(self, user_id: str) -> bool:
        return user_id in self.active_connections

manager = ConnectionManager()
