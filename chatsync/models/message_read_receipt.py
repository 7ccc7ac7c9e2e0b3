from sqlalchemy import Column, String, ForeignKey, DateTime
from sqlalchemy.orm import relationship
from .base import Base, utcnow

class MessageReadReceipt(Base):
    __tablename__ = "message_read_receipts"
    
    # Составной ключ: один пользователь может прочитать сообщение только один раз
    message_id = Column(String(26), ForeignKey("messages.id", ondelete="CASCADE"), primary_key=True)
    user_id = Column(String(26), ForeignKey("users.id"), primary_key=True, index=True)
    read_at = Column(DateTime, default=utcnow, nullable=False)
    
    # Связи
    user = relationship("User")
