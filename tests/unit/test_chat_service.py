"""Unit tests for Chat Service."""

import asyncio
import json
import uuid

import pytest
from sqlalchemy import func, select

from app.domains.chat.service import ChatService
from app.exceptions.ai import AIQuotaExceededError, AIServiceError
from app.exceptions.chat import (
    ChatAlreadyExistsError,
    ChatNotFoundError,
    MessageNotFoundError,
    StreamSessionNotFoundError,
)
from app.schemas.chat import ChatTarget
from app.services.prompt_builder import NO_HISTORY, NO_SUMMARY
from app.services.stream_session import session_key
from app.shared.pagination import PaginationParams
from factories import ChatFactory, ChatMessageFactory, DocumentFactory, persist
from models import Chat, ChatMessage, ChatSummary, Document


def parse_events(events):
    return [json.loads(event.removeprefix("data: ").strip()) for event in events]


async def count_messages(session_factory, chat_id):
    async with session_factory() as db:
        result = await db.execute(
            select(func.count(ChatMessage.id)).where(ChatMessage.chat_id == chat_id)
        )
        return result.scalar()


async def load_chat(session_factory, chat_id):
    async with session_factory() as db:
        return await db.get(Chat, chat_id)


async def index_document(vector_store, document, texts):
    await vector_store.upsert(
        ids=[f"{document.id}_chunk_{i}" for i in range(len(texts))],
        embeddings=[[1.0, i / 10, 0.1] for i in range(len(texts))],
        metadatas=[
            {
                "documentId": str(document.id),
                "chatId": str(document.chat_id),
                "userId": str(document.user_id),
                "page": i + 1,
                "fileName": document.file_name,
                "source": document.file_name,
            }
            for i in range(len(texts))
        ],
        documents=texts,
    )


@pytest.fixture
def chat_service(test_db, services):
    return ChatService(test_db, services)


class TestChats:
    async def test_create_chat_with_default_title(self, chat_service, test_user):
        chat = await chat_service.create_chat(test_user.id)

        assert chat.title == "New Chat"
        assert chat.user_id == test_user.id

    async def test_create_chat_with_client_id(self, chat_service, test_user):
        chat_id = uuid.uuid4()

        chat = await chat_service.create_chat(test_user.id, chat_id=chat_id)

        assert chat.id == chat_id
        with pytest.raises(ChatAlreadyExistsError):
            await chat_service.create_chat(test_user.id, chat_id=chat_id)

    async def test_list_only_chats_with_messages_most_recent_first(
        self, chat_service, test_db, test_user
    ):
        empty, older, newer = (ChatFactory.build(user_id=test_user.id) for _ in range(3))
        await persist(test_db, empty, older, newer)
        await persist(
            test_db,
            ChatMessageFactory.build(chat_id=older.id),
            ChatMessageFactory.build(chat_id=newer.id),
        )
        await chat_service.send_message(ChatTarget.existing(newer.id), test_user.id, "bump")

        chats = await chat_service.list_chats(test_user.id)

        assert [c.id for c in chats] == [newer.id, older.id]

    async def test_get_chat_hides_other_users_chats(self, chat_service, test_chat, test_user_2):
        with pytest.raises(ChatNotFoundError):
            await chat_service.get_chat(test_chat.id, test_user_2.id)

    async def test_get_chat_returns_ordered_messages_and_documents(
        self, chat_service, test_db, test_chat, test_user
    ):
        first = ChatMessageFactory.build(chat_id=test_chat.id, user_content="first")
        second = ChatMessageFactory.build(chat_id=test_chat.id, user_content="second")
        await persist(
            test_db,
            second,
            first,
            DocumentFactory.build(chat_id=test_chat.id, user_id=test_user.id),
        )

        detail = await chat_service.get_chat(test_chat.id, test_user.id)

        assert [m.turn.user for m in detail.messages] == ["first", "second"]
        assert len(detail.documents) == 1

    async def test_get_messages_pages_oldest_first(
        self, chat_service, test_db, test_chat, test_user
    ):
        messages = [
            ChatMessageFactory.build(chat_id=test_chat.id, user_content=f"q{i}") for i in range(3)
        ]
        await persist(test_db, *reversed(messages))

        page = await chat_service.get_messages(
            test_chat.id, test_user.id, PaginationParams(page=2, limit=2)
        )

        assert [m.turn.user for m in page.items] == ["q2"]
        assert (page.total, page.total_pages, page.has_next, page.has_prev) == (3, 2, False, True)

    async def test_get_messages_hides_other_users_chats(
        self, chat_service, test_chat, test_user_2
    ):
        with pytest.raises(ChatNotFoundError):
            await chat_service.get_messages(test_chat.id, test_user_2.id, PaginationParams())

    async def test_delete_chat_removes_rows_chunks_and_files(
        self, chat_service, services, test_db, test_chat, test_user, vector_store, s3_client
    ):
        document = DocumentFactory.build(chat_id=test_chat.id, user_id=test_user.id)
        await persist(
            test_db,
            document,
            ChatMessageFactory.build(chat_id=test_chat.id),
            ChatSummary(chat_id=test_chat.id, summary="s", start_turn=1, end_turn=3),
        )
        await index_document(vector_store, document, ["one", "two"])

        await chat_service.delete_chat(test_chat.id, test_user.id)
        await chat_service.background_tasks()

        assert await load_chat(services.session_factory, test_chat.id) is None
        assert await count_messages(services.session_factory, test_chat.id) == 0
        assert await vector_store.count({"chatId": str(test_chat.id)}) == 0
        s3_client.delete_object.assert_called_once_with(
            Bucket="test-bucket", Key=document.storage_key
        )

    async def test_feedback_is_tri_state(self, chat_service, test_db, test_chat, test_user):
        message = await persist(test_db, ChatMessageFactory.build(chat_id=test_chat.id))

        updated = await chat_service.update_message_feedback(
            test_chat.id, message.id, test_user.id, True
        )
        assert updated.helpful is True

        cleared = await chat_service.update_message_feedback(
            test_chat.id, message.id, test_user.id, None
        )
        assert cleared.helpful is None

    async def test_feedback_on_unknown_message(self, chat_service, test_chat, test_user):
        with pytest.raises(MessageNotFoundError):
            await chat_service.update_message_feedback(
                test_chat.id, uuid.uuid4(), test_user.id, False
            )


class TestSendMessage:
    async def test_new_chat_without_documents(
        self, chat_service, services, test_user, fake_llm, fake_embeddings
    ):
        message = "Explain how photosynthesis works in plants"

        result = await chat_service.send_message(ChatTarget.create_new(), test_user.id, message)

        chat = await load_chat(services.session_factory, result.chat_id)
        assert chat.title == message[:28]
        assert result.message.turn.user == message
        assert result.message.turn.assistant == fake_llm.answer
        assert result.message.total_tokens == 42
        assert result.source_documents == []
        assert fake_embeddings.calls == []

        prompt = fake_llm.grounded_calls[0]["prompt"]
        assert NO_HISTORY in prompt
        assert NO_SUMMARY in prompt
        assert "User education level: undergraduate" in prompt
        assert "Extracted context" not in prompt

    async def test_title_is_only_set_once(self, chat_service, services, test_chat, test_user):
        target = ChatTarget.existing(test_chat.id)

        await chat_service.send_message(target, test_user.id, "First question")
        await chat_service.send_message(target, test_user.id, "Second question")

        assert (await load_chat(services.session_factory, test_chat.id)).title == "First question"

    async def test_answer_grounded_in_selected_document(
        self, chat_service, test_db, test_chat, test_user, vector_store, fake_llm
    ):
        document = await persist(
            test_db,
            DocumentFactory.build(chat_id=test_chat.id, user_id=test_user.id, file_name="bio.pdf"),
        )
        await index_document(vector_store, document, ["Chloroplasts hold chlorophyll."])

        result = await chat_service.send_message(
            ChatTarget.existing(test_chat.id),
            test_user.id,
            "Where is chlorophyll?",
            selected_document_ids=[document.id],
        )

        prompt = fake_llm.grounded_calls[0]["prompt"]
        assert "[Page 1 - bio.pdf]\nChloroplasts hold chlorophyll." in prompt
        assert [s.source for s in result.source_documents] == ["bio.pdf"]
        assert result.source_documents[0].document_id == str(document.id)

    async def test_page_focus_reaches_prompt(self, chat_service, test_chat, test_user, fake_llm):
        await chat_service.send_message(
            ChatTarget.existing(test_chat.id),
            test_user.id,
            "Summarize this page",
            page_number=4,
            page_content="Glycolysis splits glucose.",
        )

        assert "currently viewing page 4" in fake_llm.grounded_calls[0]["prompt"]

    async def test_provider_failure_persists_nothing(
        self, chat_service, services, test_chat, test_user, fake_llm
    ):
        fake_llm.error = AIQuotaExceededError("AI quota exceeded: 429")

        with pytest.raises(AIServiceError) as exc_info:
            await chat_service.send_message(ChatTarget.existing(test_chat.id), test_user.id, "hi")

        assert exc_info.value.status_code == 429
        assert exc_info.value.error_code == "AI_QUOTA_EXCEEDED"
        assert exc_info.value.message.startswith("Chat service error:")
        assert await count_messages(services.session_factory, test_chat.id) == 0
        assert (await load_chat(services.session_factory, test_chat.id)).title == "New Chat"

    async def test_seventh_turn_schedules_summary(
        self, chat_service, services, test_db, test_chat, test_user, fake_llm
    ):
        await persist(test_db, *(ChatMessageFactory.build(chat_id=test_chat.id) for _ in range(7)))

        await chat_service.send_message(ChatTarget.existing(test_chat.id), test_user.id, "next")
        await chat_service.background_tasks()

        async with services.session_factory() as db:
            result = await db.execute(
                select(ChatSummary).where(ChatSummary.chat_id == test_chat.id)
            )
            summary = result.scalar_one()
        assert (summary.start_turn, summary.end_turn) == (1, 3)
        assert len(fake_llm.utility_calls) == 1

    async def test_recent_history_is_last_four_turns(
        self, chat_service, test_db, test_chat, test_user, fake_llm
    ):
        rows = [
            ChatMessageFactory.build(chat_id=test_chat.id, user_content=f"turn {i}")
            for i in range(1, 6)
        ]
        await persist(test_db, *rows)

        await chat_service.send_message(ChatTarget.existing(test_chat.id), test_user.id, "q")

        prompt = fake_llm.grounded_calls[0]["prompt"]
        assert "User: turn 1\n" not in prompt
        assert "User: turn 2\n" in prompt
        assert "User: turn 5\n" in prompt


class TestStreaming:
    async def start(self, chat_service, chat, user, token="token-1", message="What is ATP?"):
        await chat_service.create_stream_session(
            ChatTarget.existing(chat.id), user.id, message, auth_token=token
        )
        return await chat_service.open_stream(chat.id, user.id, token)

    async def test_stream_completes_and_persists(
        self, chat_service, services, test_chat, test_user, fake_redis
    ):
        prepared = await self.start(chat_service, test_chat, test_user)

        events = parse_events([e async for e in chat_service.stream_answer(prepared)])
        assert await count_messages(services.session_factory, test_chat.id) == 0
        await chat_service.background_tasks()

        assert [e["type"] for e in events] == ["content", "content", "content", "done"]
        assert "".join(e["content"] for e in events[:-1]) == "Photosynthesis turns light into sugar."
        assert events[-1]["chat_id"] == str(test_chat.id)
        assert events[-1]["source_documents"] == []
        assert session_key(test_chat.id) not in fake_redis.store

        async with services.session_factory() as db:
            row = (
                await db.execute(select(ChatMessage).where(ChatMessage.chat_id == test_chat.id))
            ).scalar_one()
        assert row.user_content == "What is ATP?"
        assert row.assistant_content == "Photosynthesis turns light into sugar."
        assert row.total_tokens == 17
        assert (await load_chat(services.session_factory, test_chat.id)).title == "What is ATP?"

    async def test_new_chat_stream_session(self, chat_service, test_user):
        response = await chat_service.create_stream_session(
            ChatTarget.create_new(), test_user.id, "hello", auth_token="t"
        )

        assert response.stream_session_id == f"streamSession:{response.chat_id}"

    async def test_provider_error_ends_with_error_event(
        self, chat_service, services, test_chat, test_user, fake_llm
    ):
        fake_llm.stream_error = RuntimeError("503 unavailable")
        fake_llm.fail_after = 1
        prepared = await self.start(chat_service, test_chat, test_user)

        events = parse_events([e async for e in chat_service.stream_answer(prepared)])
        await chat_service.background_tasks()

        assert [e["type"] for e in events] == ["content", "error"]
        assert "unavailable" in events[-1]["error"]
        assert await count_messages(services.session_factory, test_chat.id) == 0

    async def test_empty_answer_is_an_error(
        self, chat_service, services, test_chat, test_user, fake_llm
    ):
        fake_llm.stream_pieces = []
        prepared = await self.start(chat_service, test_chat, test_user)

        events = parse_events([e async for e in chat_service.stream_answer(prepared)])

        assert [e["type"] for e in events] == ["error"]
        assert await count_messages(services.session_factory, test_chat.id) == 0

    async def test_cancel_persists_nothing_by_default(
        self, chat_service, services, test_chat, test_user
    ):
        prepared = await self.start(chat_service, test_chat, test_user)
        cancel = asyncio.Event()

        events = []
        async for event in chat_service.stream_answer(prepared, cancel):
            events.append(event)
            cancel.set()
        await chat_service.background_tasks()

        assert [e["type"] for e in parse_events(events)] == ["content"]
        assert await count_messages(services.session_factory, test_chat.id) == 0

    async def test_cancel_keeps_partial_answer_when_enabled(
        self, chat_service, services, test_chat, test_user
    ):
        services.config.persist_partial_on_cancel = True
        prepared = await self.start(chat_service, test_chat, test_user)
        cancel = asyncio.Event()

        async for _ in chat_service.stream_answer(prepared, cancel):
            cancel.set()
        await chat_service.background_tasks()

        async with services.session_factory() as db:
            row = (
                await db.execute(select(ChatMessage).where(ChatMessage.chat_id == test_chat.id))
            ).scalar_one()
        assert row.assistant_content == "Photosynthesis "

    async def test_consumer_closing_early_counts_as_cancel(
        self, chat_service, services, test_chat, test_user
    ):
        prepared = await self.start(chat_service, test_chat, test_user)

        stream = chat_service.stream_answer(prepared)
        await stream.__anext__()
        await stream.aclose()
        await chat_service.background_tasks()

        assert await count_messages(services.session_factory, test_chat.id) == 0

    async def test_open_requires_matching_token(self, chat_service, test_chat, test_user):
        await chat_service.create_stream_session(
            ChatTarget.existing(test_chat.id), test_user.id, "hi", auth_token="right"
        )

        with pytest.raises(StreamSessionNotFoundError):
            await chat_service.open_stream(test_chat.id, test_user.id, "wrong")

    async def test_open_without_session(self, chat_service, test_chat, test_user):
        with pytest.raises(StreamSessionNotFoundError):
            await chat_service.open_stream(test_chat.id, test_user.id, "t")

    async def test_latest_session_wins(self, chat_service, test_chat, test_user, fake_llm):
        await chat_service.create_stream_session(
            ChatTarget.existing(test_chat.id), test_user.id, "old question", auth_token="t"
        )
        prepared = await self.start(chat_service, test_chat, test_user, "t", "new question")

        assert prepared.session.message == "new question"
        assert prepared.turn.prompt.endswith("User Query: new question")


async def test_document_rows_count_toward_has_documents(
    test_db, services, test_chat, test_user, fake_embeddings
):
    # No selection means no retrieval even when documents exist.
    await persist(test_db, DocumentFactory.build(chat_id=test_chat.id, user_id=test_user.id))

    await ChatService(test_db, services).send_message(
        ChatTarget.existing(test_chat.id), test_user.id, "hello"
    )

    assert fake_embeddings.calls == []
    async with services.session_factory() as db:
        assert (await db.execute(select(func.count(Document.id)))).scalar() == 1
