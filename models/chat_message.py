"""
Chat message model: one paired user/assistant turn.
"""

from sqlalchemy import Boolean, Column, ForeignKey, Index, Integer, Text
from sqlalchemy.orm import relationship

from .base import UUID, BaseModel


class ChatMessage(BaseModel):
    """
    Represents a persisted conversation turn.

    Rows are immutable once written except for ``helpful``, which is
    tri-state (unset, true, false). Turn order is ``created_at`` order.
    """

    __tablename__ = "chat_messages"
    __table_args__ = (Index("idx_chat_messages_chat_created", "chat_id", "created_at"),)

    chat_id = Column(UUID(), ForeignKey("chats.id", ondelete="CASCADE"), nullable=False)
    user_content = Column(Text, nullable=False)
    assistant_content = Column(Text, nullable=False)
    helpful = Column(Boolean, nullable=True)
    total_tokens = Column(Integer, nullable=False, default=0)

    # Relationships
    chat = relationship("Chat", back_populates="messages")

    @property
    def turn(self) -> dict:
        return {"user": self.user_content, "assistant": self.assistant_content}
