# tests/conftest.py
import os

# Set up test environment variables BEFORE any other imports
os.environ["TESTING"] = "true"
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("TEST_DATABASE_URL", "sqlite+aiosqlite:///./test.db")
os.environ.setdefault("DATABASE_URL", os.environ["TEST_DATABASE_URL"])
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-access-tokens")
os.environ.setdefault("GEMINI_API_KEY", "")
os.environ.setdefault("LOG_FORMAT", "simple")

import asyncio
import uuid
from unittest.mock import MagicMock

import chromadb
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from app.core.config import Settings
from app.core.container import ServiceContainer
from app.core.security import create_access_token
from app.database import get_db
from app.main import app
from app.services.cache_service import CacheService
from app.services.llm_service import Completion, StreamDelta
from app.services.storage_service import StorageService
from app.services.vector_store import VectorStore
from factories import ChatFactory, UserFactory, persist
from models import Base


# ----- fakes for external providers -----


class FakeRedis:
    """In-memory stand-in for a ``redis.asyncio`` client."""

    def __init__(self):
        self.store: dict[str, str] = {}
        self.ttls: dict[str, int | None] = {}

    async def set(self, key, value, ex=None):
        self.store[key] = value
        self.ttls[key] = ex

    async def get(self, key):
        return self.store.get(key)

    async def delete(self, key):
        self.store.pop(key, None)
        self.ttls.pop(key, None)

    async def aclose(self):
        pass


class FakeLLM:
    """Records prompts and answers with canned text.

    ``error`` makes grounded completions fail; ``utility_error`` does the same
    for summaries and rewrites. ``stream_error`` is raised after
    ``fail_after`` streamed pieces.
    """

    def __init__(self):
        self.answer = "Photosynthesis turns light into chemical energy."
        self.utility_answer = "Condensed memory of the conversation."
        self.stream_pieces = ["Photosynthesis ", "turns light ", "into sugar."]
        self.error: Exception | None = None
        self.utility_error: Exception | None = None
        self.stream_error: Exception | None = None
        self.fail_after = 0
        self.calls: list[dict] = []
        self.stream_prompts: list[str] = []

    async def complete(self, prompt, *, temperature=None, max_output_tokens=None, grounded=True):
        self.calls.append({"prompt": prompt, "grounded": grounded, "temperature": temperature})
        if grounded and self.error:
            raise self.error
        if not grounded and self.utility_error:
            raise self.utility_error
        text = self.answer if grounded else self.utility_answer
        return Completion(text=text, total_tokens=42)

    @property
    def grounded_calls(self) -> list[dict]:
        return [call for call in self.calls if call["grounded"]]

    @property
    def utility_calls(self) -> list[dict]:
        return [call for call in self.calls if not call["grounded"]]

    async def stream(self, prompt, cancel_event=None):
        self.stream_prompts.append(prompt)
        for index, piece in enumerate(self.stream_pieces):
            if cancel_event is not None and cancel_event.is_set():
                return
            if self.stream_error and index == self.fail_after:
                raise self.stream_error
            yield StreamDelta(text=piece)
            await asyncio.sleep(0)
        yield StreamDelta(text="", total_tokens=17)


class FakeEmbeddings:
    """Three-dimensional vectors; every text lands near the query vector."""

    def __init__(self):
        self.calls: list[list[str]] = []
        self.error: Exception | None = None

    async def embed(self, texts, task_type="retrieval_document"):
        self.calls.append(list(texts))
        if self.error:
            raise self.error
        return [[1.0, (len(text) % 7) / 10, 0.1] for text in texts]

    async def embed_query(self, text):
        vectors = await self.embed([text], task_type="retrieval_query")
        return vectors[0]


# ----- settings and database -----


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        environment="testing",
        gemini_api_key="test-gemini-key",
        chroma_mode="ephemeral",
        max_documents_per_chat=5,
        max_file_size=1024 * 1024,
        persist_partial_on_cancel=False,
    )


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    """A fresh SQLite database file per test."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(bind=db_engine, expire_on_commit=False)


@pytest_asyncio.fixture
async def test_db(session_factory):
    """Create a test database session."""
    async with session_factory() as session:
        yield session


# ----- services -----


@pytest.fixture
def fake_llm() -> FakeLLM:
    return FakeLLM()


@pytest.fixture
def fake_embeddings() -> FakeEmbeddings:
    return FakeEmbeddings()


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def vector_store() -> VectorStore:
    """Real Chroma, in memory, one collection per test."""
    return VectorStore(chromadb.EphemeralClient(), collection_name=f"test-{uuid.uuid4().hex}")


@pytest.fixture
def s3_client() -> MagicMock:
    client = MagicMock()
    client.generate_presigned_url.return_value = "https://storage.example/signed/doc.pdf"
    return client


@pytest_asyncio.fixture
async def services(
    test_settings, session_factory, fake_llm, fake_embeddings, fake_redis, vector_store, s3_client
):
    container = ServiceContainer(
        test_settings,
        session_factory=session_factory,
        llm=fake_llm,
        embeddings=fake_embeddings,
        vector_store=vector_store,
        cache=CacheService(fake_redis),
        storage=StorageService(s3_client, bucket="test-bucket"),
    )
    yield container
    await container.aclose()


# ----- users and chats -----


@pytest_asyncio.fixture
async def test_user(test_db):
    """Create a test user."""
    return await persist(test_db, UserFactory.build(email="test@example.com"))


@pytest_asyncio.fixture
async def test_user_2(test_db):
    """Create a second test user."""
    return await persist(test_db, UserFactory.build(email="test2@example.com"))


@pytest_asyncio.fixture
async def test_chat(test_db, test_user):
    return await persist(test_db, ChatFactory.build(user_id=test_user.id))


# ----- HTTP clients -----


@pytest.fixture
def auth_headers(test_user) -> dict:
    return {"Authorization": f"Bearer {create_access_token(str(test_user.id))}"}


@pytest_asyncio.fixture
async def client(session_factory, services):
    """Create a test client bound to the test database and services."""

    async def override_get_db():
        async with session_factory() as session:
            yield session

    previous_services = app.state.services
    app.state.services = services
    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
    app.state.services = previous_services


@pytest_asyncio.fixture
async def authenticated_client(client, auth_headers):
    """Create an authenticated test client."""
    client.headers.update(auth_headers)
    yield client
