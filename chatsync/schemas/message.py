from datetime import datetime
from pydantic import BaseModel, Field, field_validator
from typing import Optional, List

from chatsync.models.base import as_naive_utc


class MessageBase(BaseModel):
    text: str

class MessageCreate(MessageBase):
    chat_id: str
    file_id: Optional[str] = None
    client_message_id: Optional[str] = None

class MessageResponse(MessageBase):
    id: str
    chat_id: str
    sender_id: str
    sender_username: Optional[str] = None
    file_id: Optional[str] = None
    timestamp: datetime
    client_message_id: Optional[str] = None
    
    class Config:
        from_attributes = True

class MessageHistoryResponse(BaseModel):
    messages: List[MessageResponse]
    has_more: bool
    oldest_timestamp: Optional[datetime] = None

class MarkMessagesRead(BaseModel):
    chat_id: str
    message_ids: List[str] = Field(min_length=1)

class DeleteMessageResponse(BaseModel):
    message_id: str
    delete_type: str

class ReadStatusEvent(BaseModel):
    """Событие прочтения, которое проходит через очередь read_status_sync"""
    room_id: str = Field(alias="roomId", min_length=1)
    user_id: str = Field(alias="userId", min_length=1)
    message_ids: List[str] = Field(alias="messageIds", min_length=1)
    read_at: datetime = Field(alias="readAt")

    class Config:
        populate_by_name = True

    @field_validator("message_ids")
    @classmethod
    def _no_blank_ids(cls, value: List[str]) -> List[str]:
        if any(not message_id for message_id in value):
            raise ValueError("messageIds must not contain empty ids")
        return value

    @field_validator("read_at")
    @classmethod
    def _as_naive_utc(cls, value: datetime) -> datetime:
        return as_naive_utc(value)

    @property
    def unique_message_ids(self) -> List[str]:
        return list(dict.fromkeys(self.message_ids))

    def to_wire(self) -> bytes:
        return self.model_dump_json(by_alias=True).encode("utf-8")

class SendMessageWebSocket(BaseModel):
    chat_id: str
    text: str
    client_message_id: Optional[str] = None

class MarkReadWebSocket(BaseModel):
    chat_id: str
    message_ids: List[str] = Field(min_length=1)
