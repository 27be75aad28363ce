"""
Document model for PDFs uploaded into a chat.
"""

from sqlalchemy import Column, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from .base import UUID, BaseModel


class Document(BaseModel):
    """
    Represents an uploaded document.

    The PDF bytes live in object storage under ``storage_key`` and its chunks
    live in the vector index tagged with this row's id. ``vector_store_id``
    names the per-chat namespace and ``vector_store_file_id`` the ingestion
    batch the chunks were written in.
    """

    __tablename__ = "documents"

    chat_id = Column(UUID(), ForeignKey("chats.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(UUID(), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    file_name = Column(String(255), nullable=False)
    file_type = Column(String(100), nullable=False)
    file_size = Column(Integer, nullable=False)
    storage_key = Column(String(500), nullable=False)
    vector_store_id = Column(String(100), nullable=False)
    vector_store_file_id = Column(String(100), nullable=False)

    # Relationships
    chat = relationship("Chat", back_populates="documents")
    user = relationship("User", back_populates="documents")
