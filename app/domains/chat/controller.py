"""Chat API controller with FastAPI endpoints."""

import asyncio
import logging
from contextlib import aclosing
from uuid import UUID

from fastapi import APIRouter, Body, Depends, Path, Query, Request, status
from fastapi.responses import JSONResponse, StreamingResponse

from app.core.dependencies import (
    get_access_token,
    get_chat_service,
    get_current_user,
    validate_token,
)
from app.domains.chat.service import ChatService
from app.exceptions.ai import AIRateLimitError, AIServiceError
from app.exceptions.base import BadRequestError
from app.schemas.base import ResponseSchema
from app.schemas.chat import ChatCreate, ChatTarget, FeedbackRequest, MessageRequest
from app.shared.pagination import PaginationParams
from models.user import User


logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/chats",
    tags=["chats"],
    dependencies=[Depends(validate_token)],
)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def parse_chat_target(
    chat_id: str = Path(..., description='Chat id, or "new" to start a chat'),
) -> ChatTarget:
    try:
        return ChatTarget.parse(chat_id)
    except ValueError as e:
        raise BadRequestError("Invalid chat id", details={"chat_id": chat_id}) from e


def ai_error_response(error: AIServiceError) -> JSONResponse:
    headers = None
    data = {"error_code": error.error_code, "error_message": error.message}
    if isinstance(error, AIRateLimitError) or error.error_code == "AI_RATE_LIMITED":
        retry_after = error.details.get("retry_after", 60)
        headers = {"Retry-After": str(retry_after)}
        data["retry_after"] = retry_after
    return JSONResponse(
        status_code=error.status_code,
        headers=headers,
        content=ResponseSchema(
            status="error",
            message="AI service encountered an error",
            data=data,
        ).model_dump(),
    )


@router.post("", response_model=ResponseSchema, status_code=201)
async def create_chat(
    chat_request: ChatCreate | None = Body(None),
    current_user: User = Depends(get_current_user),
    service: ChatService = Depends(get_chat_service),
):
    """Create an empty chat, optionally with a client-chosen id."""
    chat = await service.create_chat(
        current_user.id, chat_id=chat_request.id if chat_request else None
    )
    return ResponseSchema(
        status="success",
        message="Chat created successfully",
        data={"id": str(chat.id), "title": chat.title},
    )


@router.get("", response_model=ResponseSchema)
async def list_chats(
    current_user: User = Depends(get_current_user),
    service: ChatService = Depends(get_chat_service),
):
    chats = await service.list_chats(current_user.id)
    return ResponseSchema(
        status="success",
        message="Chats retrieved successfully",
        data=[chat.model_dump(mode="json") for chat in chats],
    )


@router.get("/{chat_id}", response_model=ResponseSchema)
async def get_chat(
    chat_id: UUID = Path(..., description="Chat ID"),
    current_user: User = Depends(get_current_user),
    service: ChatService = Depends(get_chat_service),
):
    """Get a chat with its ordered messages and its documents."""
    chat = await service.get_chat(chat_id, current_user.id)
    return ResponseSchema(
        status="success",
        message="Chat retrieved successfully",
        data=chat.model_dump(mode="json"),
    )


@router.get("/{chat_id}/messages", response_model=ResponseSchema)
async def get_messages(
    chat_id: UUID = Path(..., description="Chat ID"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    service: ChatService = Depends(get_chat_service),
):
    """Get a page of the chat's messages, oldest first."""
    pagination = PaginationParams(page=page, limit=limit)
    messages = await service.get_messages(chat_id, current_user.id, pagination)
    return ResponseSchema(
        status="success",
        message="Messages retrieved successfully",
        data=messages.model_dump(mode="json"),
    )


@router.delete("/{chat_id}", response_model=ResponseSchema)
async def delete_chat(
    chat_id: UUID = Path(..., description="Chat ID"),
    current_user: User = Depends(get_current_user),
    service: ChatService = Depends(get_chat_service),
):
    await service.delete_chat(chat_id, current_user.id)
    return ResponseSchema(status="success", message="Chat deleted successfully", data=None)


@router.post("/{chat_id}/messages", response_model=ResponseSchema, status_code=201)
async def send_message(
    target: ChatTarget = Depends(parse_chat_target),
    message_request: MessageRequest = Body(...),
    current_user: User = Depends(get_current_user),
    service: ChatService = Depends(get_chat_service),
):
    """Send a message and get the complete answer in one response.

    Args:
        target: Existing chat, or a new one when the path says "new"
        message_request: Message, selected documents and optional page focus

    Returns:
        The persisted turn and the passages it was grounded on
    """
    try:
        result = await service.send_message(
            target,
            current_user.id,
            message_request.message,
            selected_document_ids=message_request.selected_document_ids,
            page_number=message_request.page_number,
            page_content=message_request.page_content,
        )
    except AIServiceError as e:
        logger.error(f"AI service error: {e.message}")
        return ai_error_response(e)

    return ResponseSchema(
        status="success",
        message="Message sent successfully",
        data=result.model_dump(mode="json"),
    )


@router.post("/{chat_id}/stream-session", response_model=ResponseSchema, status_code=201)
async def create_stream_session(
    target: ChatTarget = Depends(parse_chat_target),
    message_request: MessageRequest = Body(...),
    current_user: User = Depends(get_current_user),
    token: str = Depends(get_access_token),
    service: ChatService = Depends(get_chat_service),
):
    """Register a message to be answered by the next stream request."""
    result = await service.create_stream_session(
        target,
        current_user.id,
        message_request.message,
        auth_token=token,
        selected_document_ids=message_request.selected_document_ids,
        page_number=message_request.page_number,
        page_content=message_request.page_content,
    )
    return ResponseSchema(
        status="success",
        message="Stream session created",
        data=result.model_dump(mode="json"),
    )


@router.get("/{chat_id}/stream")
async def stream_chat(
    request: Request,
    chat_id: UUID = Path(..., description="Chat ID"),
    current_user: User = Depends(get_current_user),
    token: str = Depends(get_access_token),
    service: ChatService = Depends(get_chat_service),
):
    """Stream the answer to the message registered by ``stream-session``."""
    prepared = await service.open_stream(chat_id, current_user.id, token)
    cancel_event = asyncio.Event()

    async def events():
        async with aclosing(service.stream_answer(prepared, cancel_event)) as stream:
            async for event in stream:
                yield event
                if await request.is_disconnected():
                    logger.info(f"Client left the stream for chat {chat_id}")
                    cancel_event.set()

    return StreamingResponse(
        events(),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
        background=service.background_tasks,
    )


@router.patch(
    "/{chat_id}/messages/{message_id}/feedback",
    response_model=ResponseSchema,
    status_code=status.HTTP_200_OK,
)
async def update_message_feedback(
    chat_id: UUID = Path(..., description="Chat ID"),
    message_id: UUID = Path(..., description="Message ID"),
    feedback: FeedbackRequest = Body(...),
    current_user: User = Depends(get_current_user),
    service: ChatService = Depends(get_chat_service),
):
    message = await service.update_message_feedback(
        chat_id, message_id, current_user.id, feedback.helpful
    )
    return ResponseSchema(
        status="success",
        message="Feedback recorded",
        data=message.model_dump(mode="json"),
    )
