from sqlalchemy import Column, ForeignKey, Text, DateTime, String
from sqlalchemy.orm import relationship
from .base import BaseModel, utcnow

class Message(BaseModel):
    __tablename__ = "messages"
    
    chat_id = Column(String(26), ForeignKey("chats.id"), nullable=False, index=True)
    sender_id = Column(String(26), ForeignKey("users.id"), nullable=False, index=True)
    text = Column(Text, nullable=False)
    file_id = Column(String(26), nullable=True)
    # Время создания; от него зависит тип удаления (global/local)
    timestamp = Column(DateTime, default=utcnow, nullable=False, index=True)
    
    # Уникальный идентификатор для предотвращения дублирования
    client_message_id = Column(String(100), nullable=True, index=True)
    
    # Связи
    chat = relationship("Chat", back_populates="messages")
    sender = relationship("User", foreign_keys=[sender_id], back_populates="sent_messages")
