from sqlalchemy import Column, String, Enum, ForeignKey
from sqlalchemy.orm import relationship
from enum import Enum as PyEnum
from .base import BaseModel

class ChatType(PyEnum):
    PRIVATE = "private"
    GROUP = "group"

class Chat(BaseModel):
    __tablename__ = "chats"
    
    name = Column(String(100), nullable=True)  # только для групповых чатов
    chat_type = Column(Enum(ChatType), nullable=False, default=ChatType.PRIVATE)
    creator_id = Column(String(26), ForeignKey("users.id"), nullable=False, index=True)
    
    # Связи
    messages = relationship("Message", back_populates="chat")
    members = relationship("ChatMember", back_populates="chat", cascade="all, delete-orphan")
