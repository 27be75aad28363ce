"""Document service layer: PDF ingestion into a chat and document removal."""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import UTC, datetime
from uuid import UUID

from fastapi import BackgroundTasks
from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.container import ServiceContainer
from app.domains.chat.service import ChatService, get_owned_chat
from app.exceptions.base import BaseAppException
from app.exceptions.chat import (
    DocumentNotFoundError,
    DocumentRemovalError,
    DocumentValidationError,
    FileTooLargeError,
)
from app.schemas.chat import ChatTarget, SignedUrlResponse
from app.schemas.document import FailedUpload, UploadedDocument, UploadResult
from app.services.embedding_service import TASK_RETRIEVAL_DOCUMENT
from app.services.pdf_extractor import extract_pdf
from app.services.storage_service import StorageService
from models.document import Document


logger = logging.getLogger(__name__)

PDF_CONTENT_TYPE = "application/pdf"
NO_SLOTS_REASON = "No remaining upload slots"


@dataclass
class IncomingFile:
    """An uploaded file already read into memory."""

    file_name: str
    content_type: str | None
    content: bytes

    @property
    def is_pdf(self) -> bool:
        return self.content_type == PDF_CONTENT_TYPE or (
            not self.content_type and self.file_name.lower().endswith(".pdf")
        )


def chunk_id(document_id: UUID, sequence: int) -> str:
    return f"{document_id}_chunk_{sequence}"


class DocumentService:
    """Upload, remove and sign documents belonging to a chat."""

    def __init__(
        self,
        db: AsyncSession,
        services: ServiceContainer,
        background_tasks: BackgroundTasks | None = None,
    ):
        self.db = db
        self.services = services
        self.config = services.config
        self.background_tasks = (
            background_tasks if background_tasks is not None else BackgroundTasks()
        )

    def validate_files(self, files: list[IncomingFile]) -> None:
        """Reject the whole request before any provider is called."""
        if not files:
            raise DocumentValidationError("No files uploaded")
        not_pdf = [f.file_name for f in files if not f.is_pdf]
        if not_pdf:
            raise DocumentValidationError(
                "Only PDF files are allowed", details={"rejected_files": not_pdf}
            )
        for f in files:
            if len(f.content) > self.config.max_file_size:
                raise FileTooLargeError(f.file_name, self.config.max_file_size)

    async def _document_count(self, chat_id: UUID) -> int:
        result = await self.db.execute(
            select(func.count(Document.id)).where(Document.chat_id == chat_id)
        )
        return result.scalar() or 0

    async def upload_documents(
        self,
        target: ChatTarget,
        user_id: UUID,
        files: list[IncomingFile],
    ) -> UploadResult:
        """Ingest PDFs into a chat, up to ``max_documents_per_chat``.

        Files beyond the remaining slots are reported as failed in
        submission order. Each accepted file is processed independently, so
        one failure never stops the rest of the batch.
        """
        self.validate_files(files)
        chats = ChatService(self.db, self.services, self.background_tasks)
        chat = await chats.resolve_chat(target, user_id)

        cap = self.config.max_documents_per_chat
        remaining = max(cap - await self._document_count(chat.id), 0)
        accepted, overflow = files[:remaining], files[remaining:]

        successful: list[UploadedDocument] = []
        failed = [FailedUpload(file_name=f.file_name, reason=NO_SLOTS_REASON) for f in overflow]
        batch_id = f"{chat.id}_{int(time.time() * 1000)}"

        for incoming in accepted:
            try:
                successful.append(await self._ingest(chat.id, user_id, incoming, batch_id))
            except BaseAppException as e:
                logger.warning(f"Upload of {incoming.file_name} failed: {e.message}")
                failed.append(FailedUpload(file_name=incoming.file_name, reason=e.message))
            except Exception as e:
                logger.error(f"Upload of {incoming.file_name} failed: {str(e)}")
                failed.append(FailedUpload(file_name=incoming.file_name, reason=str(e)))

        remaining_slots = max(cap - await self._document_count(chat.id), 0)
        if successful and not failed:
            message = "Documents uploaded successfully"
        elif successful:
            message = "Some documents failed to upload"
        else:
            message = "No documents were uploaded"
        return UploadResult(
            message=message,
            chat_id=chat.id,
            remaining_slots=remaining_slots,
            successful_uploads=successful,
            failed_uploads=failed,
        )

    async def _ingest(
        self, chat_id: UUID, user_id: UUID, incoming: IncomingFile, batch_id: str
    ) -> UploadedDocument:
        loop = asyncio.get_running_loop()
        extracted = await loop.run_in_executor(None, extract_pdf, incoming.content)
        if not extracted.has_text:
            raise DocumentValidationError("No extractable text found in PDF")

        chunks = [
            c for c in self.services.chunker.split_pages(extracted.pages) if c.text.strip()
        ]
        storage_key = StorageService.generate_key(user_id, incoming.file_name)

        document = Document(
            chat_id=chat_id,
            user_id=user_id,
            file_name=incoming.file_name,
            file_type=incoming.content_type or PDF_CONTENT_TYPE,
            file_size=len(incoming.content),
            storage_key=storage_key,
            vector_store_id=f"chat_{chat_id}",
            vector_store_file_id=batch_id,
        )
        self.db.add(document)
        await self.db.commit()
        await self.db.refresh(document)

        try:
            vectors = await self.services.embeddings.embed(
                [c.text for c in chunks], task_type=TASK_RETRIEVAL_DOCUMENT
            )
            await self.services.vector_store.upsert(
                ids=[chunk_id(document.id, i) for i in range(len(chunks))],
                embeddings=vectors,
                metadatas=[
                    {
                        "documentId": str(document.id),
                        "chatId": str(chat_id),
                        "userId": str(user_id),
                        "page": c.page,
                        "fileName": incoming.file_name,
                        "source": incoming.file_name,
                    }
                    for c in chunks
                ],
                documents=[c.text for c in chunks],
            )
        except Exception:
            await self._discard_unindexed(document)
            raise

        self.background_tasks.add_task(self._store_original, storage_key, incoming)
        logger.info(
            f"Indexed {incoming.file_name} as {document.id}: "
            f"{extracted.num_pages} pages, {len(chunks)} chunks"
        )
        return UploadedDocument(
            document_id=document.id,
            file_name=incoming.file_name,
            pages=extracted.num_pages,
            chunks=len(chunks),
        )

    async def _discard_unindexed(self, document: Document) -> None:
        """Drop a record whose chunks never made it into the index."""
        await self.db.execute(delete(Document).where(Document.id == document.id))
        await self.db.commit()
        try:
            await self.services.vector_store.delete_by_filter({"documentId": str(document.id)})
        except Exception as e:
            logger.warning(f"Could not clear partial chunks of {document.id}: {e}")

    async def _store_original(self, storage_key: str, incoming: IncomingFile) -> None:
        try:
            await self.services.storage.put_object(
                storage_key, incoming.content, incoming.content_type or PDF_CONTENT_TYPE
            )
        except Exception as e:
            logger.error(f"Storing original of {incoming.file_name} failed: {str(e)}")

    async def _get_owned_document(
        self, chat_id: UUID, document_id: UUID, user_id: UUID
    ) -> Document:
        await get_owned_chat(self.db, chat_id, user_id)
        result = await self.db.execute(
            select(Document).where(
                Document.id == document_id,
                Document.chat_id == chat_id,
                Document.user_id == user_id,
            )
        )
        document = result.scalar_one_or_none()
        if not document:
            raise DocumentNotFoundError(document_id)
        return document

    async def remove_document(self, chat_id: UUID, document_id: UUID, user_id: UUID) -> None:
        """Delete the document row, then clean up chunks and the PDF.

        The row delete is authoritative and its failure is an error; index
        and storage cleanup are queued on ``background_tasks`` and only log
        failures.
        """
        document = await self._get_owned_document(chat_id, document_id, user_id)
        storage_key = document.storage_key

        try:
            await self.db.execute(delete(Document).where(Document.id == document.id))
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Failed to delete document {document_id}: {str(e)}")
            raise DocumentRemovalError(document_id) from e

        self.background_tasks.add_task(self._cleanup_document, document_id, storage_key)
        logger.info(f"Removed document {document_id} from chat {chat_id}")

    async def _cleanup_document(self, document_id: UUID, storage_key: str) -> None:
        try:
            removed = await self.services.vector_store.delete_by_filter(
                {"documentId": str(document_id)}
            )
            logger.info(f"Removed {removed} chunks of document {document_id}")
        except Exception as e:
            logger.warning(f"Vector cleanup failed for document {document_id}: {e}")
        try:
            await self.services.storage.delete_object(storage_key)
        except Exception as e:
            logger.warning(f"Storage cleanup failed for {storage_key}: {e}")

    async def get_signed_document_url(
        self, chat_id: UUID, document_id: UUID, user_id: UUID
    ) -> SignedUrlResponse:
        document = await self._get_owned_document(chat_id, document_id, user_id)
        ttl = self.config.signed_url_ttl
        url = await self.services.storage.generate_signed_url(document.storage_key, expires_in=ttl)
        return SignedUrlResponse(url=url, expires_in=ttl, generated_at=datetime.now(UTC))
