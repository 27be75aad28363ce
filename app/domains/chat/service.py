"""Chat service layer: grounded answers over a chat's documents and memory."""

import asyncio
import json
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from uuid import UUID

from fastapi import BackgroundTasks
from sqlalchemy import delete, exists, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import Select

from app.core.container import ServiceContainer
from app.exceptions.ai import AIServiceError, map_provider_error
from app.exceptions.chat import (
    ChatAlreadyExistsError,
    ChatNotFoundError,
    MessageNotFoundError,
    StreamSessionNotFoundError,
)
from app.schemas.chat import (
    ChatDetailResponse,
    ChatMessageResponse,
    ChatResponse,
    ChatTarget,
    MessageResult,
    SourceDocument,
    StreamSessionResponse,
)
from app.schemas.document import DocumentResponse
from app.services.prompt_builder import build_prompt
from app.services.retrieval_service import RetrievalResult
from app.services.stream_session import StreamSession, StreamSessionCoordinator
from app.shared.pagination import PaginatedResponse, PaginationParams, paginate
from models.base import utcnow
from models.chat import Chat
from models.chat_message import ChatMessage
from models.chat_summary import ChatSummary
from models.document import Document
from models.user import User


logger = logging.getLogger(__name__)


def sse_event(payload: dict) -> str:
    return f"data: {json.dumps(payload)}\n\n"


async def get_owned_chat(db: AsyncSession, chat_id: UUID, user_id: UUID) -> Chat:
    """Load a chat the caller owns; absent and foreign chats look the same."""
    result = await db.execute(select(Chat).where(Chat.id == chat_id, Chat.user_id == user_id))
    chat = result.scalar_one_or_none()
    if not chat:
        raise ChatNotFoundError(chat_id)
    return chat


@dataclass
class PreparedTurn:
    """Everything the completion call needs, gathered before it starts."""

    chat: Chat
    message: str
    prompt: str
    retrieval: RetrievalResult
    turn_count: int
    summary_scheduled: bool = False


@dataclass
class PreparedStream:
    session: StreamSession
    turn: PreparedTurn
    source_documents: list[dict] = field(default_factory=list)


class ChatService:
    """Service class for chats, messages and answers.

    Request-scoped: one instance per request, sharing the process-wide
    collaborators held by the ``ServiceContainer``. Work queued on
    ``background_tasks`` runs after the response has been sent.
    """

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

    # ----- chats -----

    async def create_chat(self, user_id: UUID, chat_id: UUID | None = None) -> Chat:
        if chat_id is not None:
            taken = await self.db.execute(select(Chat.id).where(Chat.id == chat_id))
            if taken.scalar_one_or_none() is not None:
                raise ChatAlreadyExistsError(chat_id)

        chat = Chat(user_id=user_id, title=self.config.default_chat_title)
        if chat_id is not None:
            chat.id = chat_id
        self.db.add(chat)
        try:
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            raise ChatAlreadyExistsError(chat_id) from e
        await self.db.refresh(chat)
        logger.info(f"Created chat {chat.id} for user {user_id}")
        return chat

    async def resolve_chat(self, target: ChatTarget, user_id: UUID) -> Chat:
        """Turn ``new`` into a fresh chat, or load the caller's existing one."""
        if target.is_new:
            return await self.create_chat(user_id)
        return await get_owned_chat(self.db, target.chat_id, user_id)

    async def list_chats(self, user_id: UUID) -> list[ChatResponse]:
        """Chats with at least one message, most recently active first."""
        query = (
            select(Chat)
            .where(Chat.user_id == user_id, exists().where(ChatMessage.chat_id == Chat.id))
            .order_by(Chat.updated_at.desc())
        )
        result = await self.db.execute(query)
        return [ChatResponse.model_validate(chat) for chat in result.scalars().all()]

    async def get_chat(self, chat_id: UUID, user_id: UUID) -> ChatDetailResponse:
        chat = await get_owned_chat(self.db, chat_id, user_id)
        messages = await self._get_messages(chat.id)
        documents_result = await self.db.execute(
            select(Document).where(Document.chat_id == chat.id).order_by(Document.created_at)
        )
        return ChatDetailResponse(
            id=chat.id,
            user_id=chat.user_id,
            title=chat.title,
            created_at=chat.created_at,
            updated_at=chat.updated_at,
            messages=[ChatMessageResponse.model_validate(m) for m in messages],
            documents=[DocumentResponse.model_validate(d) for d in documents_result.scalars().all()],
        )

    async def delete_chat(self, chat_id: UUID, user_id: UUID) -> None:
        """Delete the chat with its messages, summaries and documents.

        Rows go in one transaction; the chat's chunks and stored PDFs are
        cleaned up afterwards in the background.
        """
        chat = await get_owned_chat(self.db, chat_id, user_id)
        keys_result = await self.db.execute(
            select(Document.storage_key).where(Document.chat_id == chat.id)
        )
        storage_keys = list(keys_result.scalars().all())

        await self.db.execute(delete(ChatMessage).where(ChatMessage.chat_id == chat.id))
        await self.db.execute(delete(ChatSummary).where(ChatSummary.chat_id == chat.id))
        await self.db.execute(delete(Document).where(Document.chat_id == chat.id))
        await self.db.execute(delete(Chat).where(Chat.id == chat.id))
        await self.db.commit()
        logger.info(f"Deleted chat {chat_id}")

        self.background_tasks.add_task(self._cleanup_chat_artifacts, chat_id, user_id, storage_keys)

    async def _cleanup_chat_artifacts(
        self, chat_id: UUID, user_id: UUID, storage_keys: list[str]
    ) -> None:
        try:
            removed = await self.services.vector_store.delete_by_filter(
                {"$and": [{"chatId": str(chat_id)}, {"userId": str(user_id)}]}
            )
            logger.info(f"Removed {removed} chunks for deleted chat {chat_id}")
        except Exception as e:
            logger.warning(f"Vector cleanup failed for deleted chat {chat_id}: {e}")
        for key in storage_keys:
            try:
                await self.services.storage.delete_object(key)
            except Exception as e:
                logger.warning(f"Storage cleanup failed for {key}: {e}")

    # ----- messages -----

    @staticmethod
    def _messages_query(chat_id: UUID) -> Select:
        return (
            select(ChatMessage)
            .where(ChatMessage.chat_id == chat_id)
            .order_by(ChatMessage.created_at, ChatMessage.id)
        )

    async def _get_messages(self, chat_id: UUID) -> list[ChatMessage]:
        result = await self.db.execute(self._messages_query(chat_id))
        return list(result.scalars().all())

    async def get_messages(
        self, chat_id: UUID, user_id: UUID, pagination: PaginationParams
    ) -> PaginatedResponse[ChatMessageResponse]:
        """One page of a chat's turns, oldest first."""
        await get_owned_chat(self.db, chat_id, user_id)
        page = await paginate(self.db, self._messages_query(chat_id), pagination)
        page["items"] = [ChatMessageResponse.model_validate(m) for m in page["items"]]
        return PaginatedResponse[ChatMessageResponse](**page)

    async def update_message_feedback(
        self, chat_id: UUID, message_id: UUID, user_id: UUID, helpful: bool | None
    ) -> ChatMessageResponse:
        await get_owned_chat(self.db, chat_id, user_id)
        result = await self.db.execute(
            select(ChatMessage).where(ChatMessage.id == message_id, ChatMessage.chat_id == chat_id)
        )
        message = result.scalar_one_or_none()
        if not message:
            raise MessageNotFoundError(message_id)

        message.helpful = helpful
        await self.db.commit()
        await self.db.refresh(message)
        return ChatMessageResponse.model_validate(message)

    def _touch_chat(self, chat: Chat, message: str) -> None:
        """Mark the chat active and give it a title from its first message."""
        chat.updated_at = utcnow()
        if chat.title == self.config.default_chat_title:
            title = message.strip()[: self.config.chat_title_max_length]
            chat.title = title or self.config.default_chat_title

    async def _prepare_turn(
        self,
        chat: Chat,
        user_id: UUID,
        message: str,
        selected_document_ids: list[UUID] | None = None,
        page_number: int | None = None,
        page_content: str | None = None,
    ) -> PreparedTurn:
        """Gather memory and document context and assemble the prompt.

        Also schedules summary regeneration when the turn count calls for
        it; the answer never waits on it.
        """
        history = await self._get_messages(chat.id)
        turns = [m.turn for m in history]
        turn_count = len(turns)

        education_result = await self.db.execute(
            select(User.education_level).where(User.id == user_id)
        )
        education_level = education_result.scalar_one_or_none()

        document_count_result = await self.db.execute(
            select(func.count(Document.id)).where(Document.chat_id == chat.id)
        )
        has_documents = (document_count_result.scalar() or 0) > 0

        memory = self.services.memory
        summary = await memory.get_latest_summary(self.db, chat.id)
        scheduled = memory.schedule_summary(self.background_tasks, chat.id, turn_count, turns)

        retrieval = await self.services.retrieval.retrieve(
            chat_id=chat.id,
            user_id=user_id,
            message=message,
            selected_document_ids=selected_document_ids,
            has_documents=has_documents,
            history=turns,
        )

        prompt = build_prompt(
            education_level=education_level,
            recent_history=memory.format_recent_history(turns),
            summary=summary,
            context=retrieval.context,
            message=message,
            page_number=page_number,
            page_content=page_content,
        )
        return PreparedTurn(
            chat=chat,
            message=message,
            prompt=prompt,
            retrieval=retrieval,
            turn_count=turn_count,
            summary_scheduled=scheduled,
        )

    async def send_message(
        self,
        target: ChatTarget,
        user_id: UUID,
        message: str,
        selected_document_ids: list[UUID] | None = None,
        page_number: int | None = None,
        page_content: str | None = None,
    ) -> MessageResult:
        """Answer in one call and persist the turn with its token usage.

        Provider failures surface as ``AIServiceError`` and nothing is
        persisted for the turn.
        """
        chat = await self.resolve_chat(target, user_id)
        turn = await self._prepare_turn(
            chat, user_id, message, selected_document_ids, page_number, page_content
        )

        try:
            completion = await self.services.llm.complete(turn.prompt)
        except AIServiceError as e:
            logger.error(f"Chat service error for chat {chat.id}: {e.message}")
            raise AIServiceError(
                f"Chat service error: {e.message}",
                error_code=e.error_code,
                details=e.details,
                status_code=e.status_code,
            ) from e
        except Exception as e:
            logger.error(f"Chat service error for chat {chat.id}: {str(e)}")
            raise AIServiceError(f"Chat service error: {str(e)}") from e

        row = ChatMessage(
            chat_id=chat.id,
            user_content=message,
            assistant_content=completion.text,
            total_tokens=completion.total_tokens,
        )
        self._touch_chat(chat, message)
        self.db.add(row)
        await self.db.commit()
        await self.db.refresh(row)

        return MessageResult(
            chat_id=chat.id,
            message=ChatMessageResponse.model_validate(row),
            source_documents=[
                SourceDocument(**source) for source in turn.retrieval.source_documents()
            ],
        )

    # ----- streaming -----

    @property
    def stream_sessions(self) -> StreamSessionCoordinator:
        return self.services.stream_sessions

    async def create_stream_session(
        self,
        target: ChatTarget,
        user_id: UUID,
        message: str,
        auth_token: str,
        selected_document_ids: list[UUID] | None = None,
        page_number: int | None = None,
        page_content: str | None = None,
    ) -> StreamSessionResponse:
        chat = await self.resolve_chat(target, user_id)
        key = await self.stream_sessions.create_session(
            chat_id=chat.id,
            user_id=user_id,
            message=message,
            auth_token=auth_token,
            selected_document_ids=selected_document_ids,
            page_number=page_number,
            page_content=page_content,
        )
        return StreamSessionResponse(stream_session_id=key, chat_id=chat.id)

    async def open_stream(self, chat_id: UUID, user_id: UUID, auth_token: str) -> PreparedStream:
        """Validate the stream session and prepare the turn it describes.

        Raises before any event is produced, so the transport can still
        answer with an ordinary error response.
        """
        chat = await get_owned_chat(self.db, chat_id, user_id)
        session = await self.stream_sessions.get_session(chat_id)
        if (
            session is None
            or session.user_id != user_id
            or not self.stream_sessions.token_matches(session, auth_token)
        ):
            raise StreamSessionNotFoundError(chat_id)

        turn = await self._prepare_turn(
            chat,
            user_id,
            session.message,
            session.selected_document_ids,
            session.page_number,
            session.page_content,
        )
        return PreparedStream(
            session=session, turn=turn, source_documents=turn.retrieval.source_documents()
        )

    async def stream_answer(
        self, prepared: PreparedStream, cancel_event: asyncio.Event | None = None
    ) -> AsyncIterator[str]:
        """Yield server-sent events for one streamed answer.

        ``content`` events carry deltas; a successful run ends with a
        ``done`` event after the session is consumed and the full answer is
        queued on ``background_tasks`` for persistence. A provider failure ends
        the stream with an ``error`` event and nothing is persisted.
        Cancellation persists nothing unless ``persist_partial_on_cancel``.
        """
        session = prepared.session
        parts: list[str] = []
        total_tokens = 0

        deltas = self.services.llm.stream(prepared.turn.prompt, cancel_event)
        try:
            async for delta in deltas:
                if delta.total_tokens:
                    total_tokens = delta.total_tokens
                if delta.text:
                    parts.append(delta.text)
                    yield sse_event({"type": "content", "content": delta.text})
        except (asyncio.CancelledError, GeneratorExit):
            self._handle_cancelled(session, parts, total_tokens)
            raise
        except Exception as e:
            error = map_provider_error(e)
            logger.error(f"Streaming failed for chat {session.chat_id}: {error.message}")
            yield sse_event({"type": "error", "error": error.message})
            return
        finally:
            await deltas.aclose()

        if cancel_event is not None and cancel_event.is_set():
            self._handle_cancelled(session, parts, total_tokens)
            return

        full_text = "".join(parts)
        if not full_text:
            logger.error(f"Empty streamed answer for chat {session.chat_id}")
            yield sse_event({"type": "error", "error": "Empty response from AI service"})
            return

        self.background_tasks.add_task(
            self._persist_streamed_turn, session.chat_id, session.message, full_text, total_tokens
        )
        await self.stream_sessions.delete_session(session.chat_id)
        yield sse_event(
            {
                "type": "done",
                "chat_id": str(session.chat_id),
                "source_documents": prepared.source_documents,
            }
        )

    def _handle_cancelled(self, session: StreamSession, parts: list[str], total_tokens: int) -> None:
        partial = "".join(parts)
        if self.config.persist_partial_on_cancel and partial:
            logger.info(f"Stream for chat {session.chat_id} cancelled, keeping partial answer")
            self.background_tasks.add_task(
                self._persist_streamed_turn, session.chat_id, session.message, partial, total_tokens
            )
        else:
            logger.info(f"Stream for chat {session.chat_id} cancelled, nothing persisted")

    async def _persist_streamed_turn(
        self, chat_id: UUID, message: str, answer: str, total_tokens: int
    ) -> None:
        try:
            async with self.services.session_factory() as db:
                result = await db.execute(select(Chat).where(Chat.id == chat_id))
                chat = result.scalar_one_or_none()
                if chat is None:
                    logger.warning(f"Chat {chat_id} vanished before its streamed turn was saved")
                    return
                self._touch_chat(chat, message)
                db.add(
                    ChatMessage(
                        chat_id=chat_id,
                        user_content=message,
                        assistant_content=answer,
                        total_tokens=total_tokens,
                    )
                )
                await db.commit()
                logger.info(f"Persisted streamed turn for chat {chat_id}")
        except SQLAlchemyError as e:
            logger.error(f"Failed to persist streamed turn for chat {chat_id}: {str(e)}")
