"""Document schemas for request/response serialization."""

from uuid import UUID

from pydantic import Field

from .base import BaseModelSchema, BaseSchema


class DocumentResponse(BaseModelSchema):
    """Client view of a document; index identifiers stay server-side."""

    chat_id: UUID
    file_name: str
    file_type: str
    file_size: int


class UploadedDocument(BaseSchema):
    document_id: UUID
    file_name: str
    pages: int
    chunks: int


class FailedUpload(BaseSchema):
    file_name: str
    reason: str


class UploadResult(BaseSchema):
    message: str
    chat_id: UUID
    remaining_slots: int
    successful_uploads: list[UploadedDocument] = Field(default_factory=list)
    failed_uploads: list[FailedUpload] = Field(default_factory=list)
