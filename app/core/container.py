"""Process-wide service instances, built lazily and owned by the app."""

import logging

from app.core.config import Settings, settings
from app.services.cache_service import CacheService
from app.services.chunker import TextChunker
from app.services.embedding_service import EmbeddingService
from app.services.llm_service import LLMService
from app.services.memory_service import ConversationMemory, SessionFactory
from app.services.retrieval_service import RetrievalService
from app.services.storage_service import StorageService
from app.services.stream_session import StreamSessionCoordinator
from app.services.vector_store import VectorStore

logger = logging.getLogger(__name__)


class ServiceContainer:
    """Holds one instance of each shared collaborator.

    Anything passed to the constructor is used as-is (tests inject fakes);
    the rest is created from ``config`` on first access, so a process that
    never streams never opens a Redis connection.
    """

    def __init__(
        self,
        config: Settings = settings,
        *,
        session_factory: SessionFactory | None = None,
        llm: LLMService | None = None,
        embeddings: EmbeddingService | None = None,
        vector_store: VectorStore | None = None,
        cache: CacheService | None = None,
        storage: StorageService | None = None,
    ):
        self.config = config
        self._session_factory = session_factory
        self._llm = llm
        self._embeddings = embeddings
        self._vector_store = vector_store
        self._cache = cache
        self._storage = storage
        self._memory: ConversationMemory | None = None
        self._retrieval: RetrievalService | None = None
        self._streams: StreamSessionCoordinator | None = None
        self.chunker = TextChunker(config.chunk_size, config.chunk_overlap)

    @property
    def session_factory(self) -> SessionFactory:
        if self._session_factory is None:
            from app.database import AsyncSessionLocal

            self._session_factory = AsyncSessionLocal
        return self._session_factory

    @property
    def llm(self) -> LLMService:
        if self._llm is None:
            self._llm = LLMService(self.config)
        return self._llm

    @property
    def embeddings(self) -> EmbeddingService:
        if self._embeddings is None:
            self._embeddings = EmbeddingService(self.config)
        return self._embeddings

    @property
    def vector_store(self) -> VectorStore:
        if self._vector_store is None:
            self._vector_store = VectorStore.from_settings(self.config)
        return self._vector_store

    @property
    def cache(self) -> CacheService:
        if self._cache is None:
            self._cache = CacheService.from_url(self.config.redis_url)
        return self._cache

    @property
    def storage(self) -> StorageService:
        if self._storage is None:
            self._storage = StorageService.from_settings(self.config)
        return self._storage

    @property
    def memory(self) -> ConversationMemory:
        if self._memory is None:
            self._memory = ConversationMemory(self.llm, self.session_factory, self.config)
        return self._memory

    @property
    def retrieval(self) -> RetrievalService:
        if self._retrieval is None:
            self._retrieval = RetrievalService(
                self.embeddings, self.vector_store, self.llm, self.config
            )
        return self._retrieval

    @property
    def stream_sessions(self) -> StreamSessionCoordinator:
        if self._streams is None:
            self._streams = StreamSessionCoordinator(self.cache, self.config.stream_session_ttl)
        return self._streams

    async def aclose(self) -> None:
        if self._cache is not None:
            await self._cache.close()
        logger.info("Service container closed")
