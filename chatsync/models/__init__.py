from .base import Base
from .user import User
from .chat import Chat
from .chat_member import ChatMember
from .message import Message
from .message_read_receipt import MessageReadReceipt
from .message_local_deletion import MessageLocalDeletion

__all__ = [
    "Base",
    "User", 
    "Chat",
    "ChatMember",
    "Message",
    "MessageReadReceipt",
    "MessageLocalDeletion"
]
