"""
Models package initialization.
"""

from .base import Base, BaseModel
from .chat import CHAT_TITLE_MAX_LENGTH, DEFAULT_CHAT_TITLE, Chat
from .chat_message import ChatMessage
from .chat_summary import ChatSummary
from .document import Document
from .user import User

__all__ = [
    "Base",
    "BaseModel",
    "User",
    "Chat",
    "ChatMessage",
    "ChatSummary",
    "Document",
    "DEFAULT_CHAT_TITLE",
    "CHAT_TITLE_MAX_LENGTH",
]
