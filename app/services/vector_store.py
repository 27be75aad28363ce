"""Chroma-backed vector index for document chunks."""

import asyncio
import logging
from dataclasses import dataclass, field
from functools import partial
from typing import Any
from uuid import UUID

import chromadb

from app.core.config import ChromaModeEnum, Settings

logger = logging.getLogger(__name__)


@dataclass
class RetrievedChunk:
    text: str
    metadata: dict[str, Any] = field(default_factory=dict)
    score: float = 0.0


def build_retrieval_filter(chat_id: UUID, user_id: UUID, document_ids: list[UUID]) -> dict:
    """Chunks of the selected documents in this user's chat, and nothing else."""
    return {
        "$and": [
            {"chatId": str(chat_id)},
            {"userId": str(user_id)},
            {"documentId": {"$in": [str(doc_id) for doc_id in document_ids]}},
        ]
    }


def create_chroma_client(config: Settings):
    """Build the Chroma client described by ``config.chroma_mode``."""
    mode = config.chroma_mode
    if mode == ChromaModeEnum.ephemeral:
        return chromadb.EphemeralClient()
    if mode == ChromaModeEnum.http:
        return chromadb.HttpClient(host=config.chroma_host, port=config.chroma_port)
    if mode == ChromaModeEnum.cloud:
        return chromadb.CloudClient(
            tenant=config.chroma_tenant,
            database=config.chroma_database,
            api_key=config.chroma_api_key,
        )
    return chromadb.PersistentClient(path=config.chroma_path)


class VectorStore:
    """One shared collection handle, created lazily on first use.

    Chroma's Python client is synchronous, so every call runs in the default
    executor. Concurrent first callers share a single creation through
    ``_init_lock``.
    """

    def __init__(self, client, collection_name: str, batch_size: int = 300):
        self._client = client
        self.collection_name = collection_name
        self.batch_size = batch_size
        self._collection = None
        self._init_lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, config: Settings) -> "VectorStore":
        return cls(
            create_chroma_client(config),
            collection_name=config.chroma_collection,
            batch_size=config.chroma_batch_size,
        )

    async def _run(self, func, *args, **kwargs):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, partial(func, *args, **kwargs))

    async def get_collection(self):
        if self._collection is not None:
            return self._collection
        async with self._init_lock:
            if self._collection is None:
                self._collection = await self._run(
                    self._client.get_or_create_collection,
                    name=self.collection_name,
                    metadata={"hnsw:space": "cosine"},
                    embedding_function=None,
                )
                logger.info(f"Vector collection '{self.collection_name}' ready")
        return self._collection

    async def upsert(
        self,
        ids: list[str],
        embeddings: list[list[float]],
        metadatas: list[dict[str, Any]],
        documents: list[str],
    ) -> int:
        if not (len(ids) == len(embeddings) == len(metadatas) == len(documents)):
            raise ValueError("ids, embeddings, metadatas and documents must have equal length")
        collection = await self.get_collection()
        for i in range(0, len(ids), self.batch_size):
            end = i + self.batch_size
            await self._run(
                collection.upsert,
                ids=ids[i:end],
                embeddings=embeddings[i:end],
                metadatas=metadatas[i:end],
                documents=documents[i:end],
            )
        return len(ids)

    async def query(
        self, query_embedding: list[float], k: int, where: dict | None = None
    ) -> list[RetrievedChunk]:
        collection = await self.get_collection()
        result = await self._run(
            collection.query,
            query_embeddings=[query_embedding],
            n_results=k,
            where=where,
            include=["documents", "metadatas", "distances"],
        )
        documents = (result.get("documents") or [[]])[0]
        metadatas = (result.get("metadatas") or [[]])[0]
        distances = (result.get("distances") or [[]])[0]
        return [
            RetrievedChunk(text=text or "", metadata=dict(meta or {}), score=1.0 - float(distance))
            for text, meta, distance in zip(documents, metadatas, distances, strict=False)
        ]

    async def delete_by_filter(self, where: dict) -> int:
        """Delete every chunk matching ``where``; returns how many were removed."""
        collection = await self.get_collection()
        found = await self._run(collection.get, where=where, include=[])
        ids = found.get("ids") or []
        if ids:
            await self._run(collection.delete, ids=ids)
        return len(ids)

    async def count(self, where: dict | None = None) -> int:
        collection = await self.get_collection()
        if where is None:
            return await self._run(collection.count)
        found = await self._run(collection.get, where=where, include=[])
        return len(found.get("ids") or [])
