"""
Chat model: one conversation thread owned by a user.
"""

from sqlalchemy import Column, ForeignKey, String
from sqlalchemy.orm import relationship

from .base import UUID, BaseModel

DEFAULT_CHAT_TITLE = "New Chat"
CHAT_TITLE_MAX_LENGTH = 28


class Chat(BaseModel):
    """
    Represents a chat thread.

    The title starts as ``DEFAULT_CHAT_TITLE`` and is replaced exactly once by
    the first characters of the first message sent to it.
    """

    __tablename__ = "chats"

    user_id = Column(UUID(), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(CHAT_TITLE_MAX_LENGTH), nullable=False, default=DEFAULT_CHAT_TITLE)

    # Relationships
    user = relationship("User", back_populates="chats")
    messages = relationship(
        "ChatMessage",
        back_populates="chat",
        cascade="all, delete-orphan",
        order_by="ChatMessage.created_at",
    )
    documents = relationship("Document", back_populates="chat", cascade="all, delete-orphan")
    summaries = relationship("ChatSummary", back_populates="chat", cascade="all, delete-orphan")
