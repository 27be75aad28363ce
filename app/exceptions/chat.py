"""Chat and document exceptions."""

from uuid import UUID

from .base import BadRequestError, BaseAppException, ConflictError, NotFoundError


class ChatNotFoundError(NotFoundError):
    """Chat does not exist or is not owned by the caller."""

    def __init__(self, chat_id: UUID | str | None = None):
        details = {"chat_id": str(chat_id)} if chat_id else None
        super().__init__(message="Chat not found", error_code="CHAT_NOT_FOUND", details=details)


class ChatAlreadyExistsError(ConflictError):
    """A chat with the requested id already exists."""

    def __init__(self, chat_id: UUID | str):
        super().__init__(
            message="Chat already exists",
            error_code="CHAT_ALREADY_EXISTS",
            details={"chat_id": str(chat_id)},
        )


class MessageNotFoundError(NotFoundError):
    """Message does not exist in the caller's chat."""

    def __init__(self, message_id: UUID | str | None = None):
        details = {"message_id": str(message_id)} if message_id else None
        super().__init__(
            message="Message not found", error_code="MESSAGE_NOT_FOUND", details=details
        )


class DocumentNotFoundError(NotFoundError):
    """Document does not exist in the caller's chat."""

    def __init__(self, document_id: UUID | str | None = None):
        details = {"document_id": str(document_id)} if document_id else None
        super().__init__(
            message="Document not found", error_code="DOCUMENT_NOT_FOUND", details=details
        )


class DocumentValidationError(BadRequestError):
    """Upload rejected before any provider call (no files, wrong type)."""

    def __init__(self, message: str = "Invalid document upload", details: dict | None = None):
        super().__init__(message=message, error_code="DOCUMENT_VALIDATION_ERROR", details=details)


class FileTooLargeError(BaseAppException):
    """Uploaded file exceeds ``max_file_size``."""

    def __init__(self, file_name: str, max_size: int):
        super().__init__(
            message=f"File '{file_name}' exceeds the maximum size of {max_size} bytes",
            status_code=413,
            error_code="FILE_TOO_LARGE",
            details={"file_name": file_name, "max_size": max_size},
        )


class DocumentRemovalError(BaseAppException):
    """The authoritative document row could not be deleted."""

    def __init__(self, document_id: UUID | str):
        super().__init__(
            message="Failed to remove document",
            status_code=500,
            error_code="DOCUMENT_REMOVAL_FAILED",
            details={"document_id": str(document_id)},
        )


class StreamSessionNotFoundError(BadRequestError):
    """No live stream session for the chat, or it belongs to another token."""

    def __init__(self, chat_id: UUID | str | None = None):
        details = {"chat_id": str(chat_id)} if chat_id else None
        super().__init__(
            message="Stream session not found or expired",
            error_code="STREAM_SESSION_NOT_FOUND",
            details=details,
        )
