"""Chat schemas for request/response serialization."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from pydantic import Field

from .base import BaseModelSchema, BaseSchema
from .document import DocumentResponse

NEW_CHAT = "new"


@dataclass(frozen=True)
class ChatTarget:
    """Either "start a new chat" or "use chat ``chat_id``"."""

    chat_id: UUID | None = None

    @classmethod
    def create_new(cls) -> ChatTarget:
        return cls(None)

    @classmethod
    def existing(cls, chat_id: UUID) -> ChatTarget:
        return cls(chat_id)

    @property
    def is_new(self) -> bool:
        return self.chat_id is None

    @classmethod
    def parse(cls, raw: str) -> ChatTarget:
        """Accept ``"new"`` or a UUID string; raise ``ValueError`` otherwise."""
        if raw.strip().lower() == NEW_CHAT:
            return cls.create_new()
        return cls.existing(UUID(raw))


class ChatCreate(BaseSchema):
    id: UUID | None = Field(None, description="Optional client-chosen chat id")


class MessageRequest(BaseSchema):
    """Body of a buffered message or a stream-session request."""

    message: str = Field(..., min_length=1, max_length=10000, description="User message")
    selected_document_ids: list[UUID] = Field(
        default_factory=list, description="Documents to search for context"
    )
    page_number: int | None = Field(None, ge=1, description="Page currently in view")
    page_content: str | None = Field(None, description="Text of the page currently in view")


class FeedbackRequest(BaseSchema):
    helpful: bool | None = Field(..., description="true, false, or null to clear")


class SourceDocument(BaseSchema):
    document_id: str | None = None
    page: int | None = None
    source: str | None = None
    content: str


class Turn(BaseSchema):
    user: str
    assistant: str


class ChatMessageResponse(BaseModelSchema):
    chat_id: UUID
    turn: Turn
    helpful: bool | None = None
    total_tokens: int = 0


class ChatResponse(BaseModelSchema):
    user_id: UUID
    title: str


class ChatDetailResponse(ChatResponse):
    messages: list[ChatMessageResponse] = Field(default_factory=list)
    documents: list[DocumentResponse] = Field(default_factory=list)


class MessageResult(BaseSchema):
    chat_id: UUID
    message: ChatMessageResponse
    source_documents: list[SourceDocument] = Field(default_factory=list)


class StreamSessionResponse(BaseSchema):
    stream_session_id: str
    chat_id: UUID


class SignedUrlResponse(BaseSchema):
    url: str
    expires_in: int
    generated_at: datetime
