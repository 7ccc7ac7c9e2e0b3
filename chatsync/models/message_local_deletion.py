from sqlalchemy import Column, String, ForeignKey, DateTime
from .base import Base, utcnow

class MessageLocalDeletion(Base):
    """Сообщение скрыто только для user_id, для остальных участников оно остаётся"""
    __tablename__ = "message_local_deletions"
    
    message_id = Column(String(26), ForeignKey("messages.id", ondelete="CASCADE"), primary_key=True)
    user_id = Column(String(26), ForeignKey("users.id"), primary_key=True, index=True)
    deleted_at = Column(DateTime, default=utcnow, nullable=False)
