"""Decide whether to retrieve, rewrite the query, and fetch document context."""

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from uuid import UUID

from app.core.config import Settings, settings
from app.services.embedding_service import EmbeddingService
from app.services.llm_service import LLMService
from app.services.memory_service import Turn, format_turns
from app.services.vector_store import RetrievedChunk, VectorStore, build_retrieval_filter

logger = logging.getLogger(__name__)

REWRITE_INSTRUCTION = """Rewrite the user's latest question as a standalone search query for finding passages in their documents.
Resolve pronouns and references using the recent conversation. Keep the user's terminology.
Return only the rewritten query, with no explanation or quotes."""

SOURCE_PREVIEW_LENGTH = 200


@dataclass
class RetrievalResult:
    context: str = ""
    chunks: list[RetrievedChunk] = field(default_factory=list)
    query: str | None = None

    def source_documents(self) -> list[dict]:
        return [
            {
                "document_id": chunk.metadata.get("documentId"),
                "page": chunk.metadata.get("page"),
                "source": chunk.metadata.get("source") or chunk.metadata.get("fileName"),
                "content": chunk.text[:SOURCE_PREVIEW_LENGTH] + "...",
            }
            for chunk in self.chunks
        ]


def format_context(chunks: Sequence[RetrievedChunk]) -> str:
    blocks = []
    for chunk in chunks:
        page = chunk.metadata.get("page", "N/A")
        name = chunk.metadata.get("fileName", "Unknown")
        blocks.append(f"[Page {page} - {name}]\n{chunk.text}")
    return "\n\n".join(blocks)


class RetrievalService:
    def __init__(
        self,
        embeddings: EmbeddingService,
        vector_store: VectorStore,
        llm: LLMService,
        config: Settings = settings,
    ):
        self.embeddings = embeddings
        self.vector_store = vector_store
        self.llm = llm
        self.top_k = config.retrieval_top_k
        self.rewrite_after = config.recent_history_turns
        self.rewrite_turns = config.query_rewrite_turns
        self.rewrite_temperature = config.rewrite_temperature
        self.rewrite_max_tokens = config.rewrite_max_tokens

    async def rewrite_query(self, message: str, history: Sequence[Turn]) -> str:
        """Make the question self-contained; any failure returns it unchanged."""
        if len(history) <= self.rewrite_after:
            return message
        prompt = (
            f"{REWRITE_INSTRUCTION}\n\n"
            f"recent conversation:\n{format_turns(history[-self.rewrite_turns :])}\n\n"
            f"latest question: {message}"
        )
        try:
            completion = await self.llm.complete(
                prompt,
                temperature=self.rewrite_temperature,
                max_output_tokens=self.rewrite_max_tokens,
                grounded=False,
            )
        except Exception as e:
            logger.warning(f"Query rewrite failed, using original message: {e}")
            return message
        rewritten = completion.text.strip()
        return rewritten or message

    async def retrieve(
        self,
        chat_id: UUID,
        user_id: UUID,
        message: str,
        selected_document_ids: Sequence[UUID] | None,
        has_documents: bool,
        history: Sequence[Turn] = (),
    ) -> RetrievalResult:
        """Fetch the top chunks of the selected documents for ``message``.

        Nothing is called when the chat has no documents or none are
        selected. Embedding or index failures drop the turn back to an
        answer without document context.
        """
        if not has_documents or not selected_document_ids:
            return RetrievalResult()

        query = await self.rewrite_query(message, history)
        where = build_retrieval_filter(chat_id, user_id, list(selected_document_ids))
        try:
            query_embedding = await self.embeddings.embed_query(query)
            chunks = await self.vector_store.query(query_embedding, k=self.top_k, where=where)
        except Exception as e:
            logger.warning(f"Retrieval failed for chat {chat_id}, answering without context: {e}")
            return RetrievalResult(query=query)

        return RetrievalResult(context=format_context(chunks), chunks=chunks, query=query)
