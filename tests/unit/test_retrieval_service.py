"""Unit tests for retrieval orchestration over a real in-memory index."""

import uuid

import pytest

from app.exceptions.ai import EmbeddingError
from app.services.retrieval_service import RetrievalService, format_context
from app.services.vector_store import RetrievedChunk


def history(n):
    return [{"user": f"Question {i}", "assistant": f"Answer {i}"} for i in range(1, n + 1)]


@pytest.fixture
def retrieval(fake_embeddings, vector_store, fake_llm, test_settings):
    return RetrievalService(fake_embeddings, vector_store, fake_llm, test_settings)


@pytest.fixture
def ids():
    return {
        "chat": uuid.uuid4(),
        "other_chat": uuid.uuid4(),
        "user": uuid.uuid4(),
        "other_user": uuid.uuid4(),
        "doc1": uuid.uuid4(),
        "doc2": uuid.uuid4(),
        "doc3": uuid.uuid4(),
    }


@pytest.fixture
async def indexed(vector_store, ids):
    def meta(doc, chat, user, page):
        return {
            "documentId": str(ids[doc]),
            "chatId": str(ids[chat]),
            "userId": str(ids[user]),
            "page": page,
            "fileName": f"{doc}.pdf",
            "source": f"{doc}.pdf",
        }

    rows = [
        ("d1-0", "doc1 chloroplast text", meta("doc1", "chat", "user", 1)),
        ("d1-1", "doc1 calvin cycle text", meta("doc1", "chat", "user", 2)),
        ("d2-0", "doc2 mitochondria text", meta("doc2", "chat", "user", 1)),
        ("d3-0", "doc3 other chat text", meta("doc3", "other_chat", "user", 1)),
        ("d1-x", "doc1 copied by someone else", meta("doc1", "chat", "other_user", 1)),
    ]
    await vector_store.upsert(
        ids=[r[0] for r in rows],
        embeddings=[[1.0, i / 10, 0.1] for i in range(len(rows))],
        metadatas=[r[2] for r in rows],
        documents=[r[1] for r in rows],
    )


class TestRetrieve:
    async def test_no_documents_makes_no_calls(self, retrieval, fake_embeddings, fake_llm, ids):
        result = await retrieval.retrieve(
            ids["chat"], ids["user"], "hi", [ids["doc1"]], has_documents=False
        )

        assert result.context == ""
        assert result.chunks == []
        assert fake_embeddings.calls == []
        assert fake_llm.calls == []

    async def test_empty_selection_makes_no_calls(self, retrieval, fake_embeddings, ids):
        result = await retrieval.retrieve(ids["chat"], ids["user"], "hi", [], has_documents=True)

        assert result.chunks == []
        assert fake_embeddings.calls == []

    async def test_only_selected_documents_of_this_chat_and_user(self, retrieval, indexed, ids):
        result = await retrieval.retrieve(
            ids["chat"], ids["user"], "chloroplast?", [ids["doc1"]], has_documents=True
        )

        assert {c.text for c in result.chunks} == {"doc1 chloroplast text", "doc1 calvin cycle text"}
        assert all(c.metadata["chatId"] == str(ids["chat"]) for c in result.chunks)
        assert all(c.metadata["userId"] == str(ids["user"]) for c in result.chunks)
        assert "[Page 2 - doc1.pdf]\ndoc1 calvin cycle text" in result.context

    async def test_multiple_selected_documents(self, retrieval, indexed, ids):
        result = await retrieval.retrieve(
            ids["chat"], ids["user"], "cells", [ids["doc1"], ids["doc2"], ids["doc3"]], True
        )

        documents = {c.metadata["documentId"] for c in result.chunks}
        assert documents == {str(ids["doc1"]), str(ids["doc2"])}
        assert len(result.chunks) <= 4

    async def test_embedding_failure_falls_back_to_no_context(
        self, retrieval, fake_embeddings, indexed, ids
    ):
        fake_embeddings.error = EmbeddingError("embedding outage")

        result = await retrieval.retrieve(ids["chat"], ids["user"], "q", [ids["doc1"]], True)

        assert result.context == ""
        assert result.chunks == []
        assert result.query == "q"

    async def test_source_documents_preview(self, retrieval, indexed, ids):
        result = await retrieval.retrieve(ids["chat"], ids["user"], "q", [ids["doc2"]], True)

        assert result.source_documents() == [
            {
                "document_id": str(ids["doc2"]),
                "page": 1,
                "source": "doc2.pdf",
                "content": "doc2 mitochondria text...",
            }
        ]


class TestRewriteQuery:
    async def test_short_history_is_not_rewritten(self, retrieval, fake_llm):
        assert await retrieval.rewrite_query("and then?", history(4)) == "and then?"
        assert fake_llm.calls == []

    async def test_long_history_rewrites_with_last_two_turns(self, retrieval, fake_llm):
        fake_llm.utility_answer = "What happens after the Calvin cycle?"

        rewritten = await retrieval.rewrite_query("and then?", history(5))

        assert rewritten == "What happens after the Calvin cycle?"
        prompt = fake_llm.utility_calls[0]["prompt"]
        assert "Question 4" in prompt and "Question 5" in prompt
        assert "Question 3" not in prompt

    async def test_rewrite_failure_keeps_message(self, retrieval, fake_llm):
        fake_llm.utility_error = RuntimeError("rate limited")

        assert await retrieval.rewrite_query("and then?", history(6)) == "and then?"

    async def test_blank_rewrite_keeps_message(self, retrieval, fake_llm):
        fake_llm.utility_answer = "   "

        assert await retrieval.rewrite_query("and then?", history(6)) == "and then?"

    async def test_rewritten_query_is_embedded(
        self, retrieval, fake_llm, fake_embeddings, indexed, ids
    ):
        fake_llm.utility_answer = "standalone query"

        result = await retrieval.retrieve(
            ids["chat"], ids["user"], "it?", [ids["doc1"]], True, history=history(5)
        )

        assert result.query == "standalone query"
        assert fake_embeddings.calls[-1] == ["standalone query"]


def test_format_context_defaults_for_missing_metadata():
    context = format_context([RetrievedChunk(text="loose text")])

    assert context == "[Page N/A - Unknown]\nloose text"
