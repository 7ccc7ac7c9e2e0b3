import logging

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from chatsync.config import settings
import redis.asyncio as redis

logger = logging.getLogger(__name__)

async_engine = create_async_engine(settings.DATABASE_URL, echo=settings.DEBUG, pool_pre_ping=True)
AsyncSessionLocal = async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)

async def get_redis():
    return redis.from_url(settings.REDIS_URL, decode_responses=True)

async def get_db():
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()

async def check_database(engine=async_engine):
    """Проверка доступности хранилища сообщений (SELECT 1), ошибка пробрасывается"""
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))
    logger.info("[DB] Message store reachable")

async def create_tables(engine=async_engine):
    from chatsync.models.base import Base
    from chatsync.models import user, chat, chat_member, message, message_read_receipt, message_local_deletion

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
