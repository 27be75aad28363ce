"""
Rolling conversation summary covering an inclusive turn range.
"""

from sqlalchemy import Column, ForeignKey, Integer, Text
from sqlalchemy.orm import relationship

from .base import UUID, BaseModel


class ChatSummary(BaseModel):
    """
    Compacted text for turns ``[start_turn, end_turn]`` (1-based, inclusive).

    Ranges for one chat are contiguous: each new row starts at the previous
    row's ``end_turn + 1``.
    """

    __tablename__ = "chat_summaries"

    chat_id = Column(UUID(), ForeignKey("chats.id", ondelete="CASCADE"), nullable=False, index=True)
    summary = Column(Text, nullable=False)
    start_turn = Column(Integer, nullable=False)
    end_turn = Column(Integer, nullable=False)
    total_tokens = Column(Integer, nullable=False, default=0)

    chat = relationship("Chat", back_populates="summaries")
