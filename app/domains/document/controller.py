"""Document API controller with FastAPI endpoints."""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, File, Path, UploadFile

from app.core.dependencies import get_current_user, get_document_service, validate_token
from app.domains.chat.controller import parse_chat_target
from app.domains.document.service import DocumentService, IncomingFile
from app.exceptions.chat import FileTooLargeError
from app.schemas.base import ResponseSchema
from app.schemas.chat import ChatTarget
from models.user import User


logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/chats",
    tags=["documents"],
    dependencies=[Depends(validate_token)],
)


async def read_upload(upload: UploadFile, max_size: int) -> IncomingFile:
    """Read an upload, never holding more than ``max_size + 1`` bytes of it."""
    file_name = upload.filename or "document.pdf"
    if upload.size is not None and upload.size > max_size:
        raise FileTooLargeError(file_name, max_size)
    content = await upload.read(max_size + 1)
    if len(content) > max_size:
        raise FileTooLargeError(file_name, max_size)
    return IncomingFile(file_name=file_name, content_type=upload.content_type, content=content)


@router.post("/{chat_id}/documents", response_model=ResponseSchema, status_code=201)
async def upload_documents(
    target: ChatTarget = Depends(parse_chat_target),
    files: list[UploadFile] | None = File(None, description="PDF files"),
    current_user: User = Depends(get_current_user),
    service: DocumentService = Depends(get_document_service),
):
    """Upload PDFs into a chat ("new" creates one).

    Per-file failures and files over the chat's cap are listed in
    ``failed_uploads``; the request itself still succeeds.
    """
    max_size = service.config.max_file_size
    incoming = [await read_upload(upload, max_size) for upload in files or []]
    result = await service.upload_documents(target, current_user.id, incoming)
    return ResponseSchema(
        status="success",
        message=result.message,
        data=result.model_dump(mode="json"),
    )


@router.delete("/{chat_id}/documents/{document_id}", response_model=ResponseSchema)
async def remove_document(
    chat_id: UUID = Path(..., description="Chat ID"),
    document_id: UUID = Path(..., description="Document ID"),
    current_user: User = Depends(get_current_user),
    service: DocumentService = Depends(get_document_service),
):
    await service.remove_document(chat_id, document_id, current_user.id)
    return ResponseSchema(status="success", message="Document removed successfully", data=None)


@router.get("/{chat_id}/documents/{document_id}/sign", response_model=ResponseSchema)
async def get_signed_document_url(
    chat_id: UUID = Path(..., description="Chat ID"),
    document_id: UUID = Path(..., description="Document ID"),
    current_user: User = Depends(get_current_user),
    service: DocumentService = Depends(get_document_service),
):
    """Short-lived download link for the original PDF."""
    signed = await service.get_signed_document_url(chat_id, document_id, current_user.id)
    return ResponseSchema(
        status="success",
        message="Signed URL generated",
        data=signed.model_dump(mode="json"),
    )
