"""Two-phase stream handshake state kept in the cache.

Phase one stores the request parameters under the chat id; phase two (the
event-stream GET, which cannot carry a body) reads them back. Only a SHA-256
fingerprint of the caller's access token is stored.
"""

import hashlib
import hmac
import logging
from uuid import UUID

from pydantic import BaseModel, Field

from app.services.cache_service import CacheService

logger = logging.getLogger(__name__)

KEY_PREFIX = "streamSession"


class StreamSession(BaseModel):
    chat_id: UUID
    user_id: UUID
    message: str
    auth_token_hash: str
    selected_document_ids: list[UUID] = Field(default_factory=list)
    page_number: int | None = None
    page_content: str | None = None


def session_key(chat_id: UUID | str) -> str:
    return f"{KEY_PREFIX}:{chat_id}"


def fingerprint(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class StreamSessionCoordinator:
    def __init__(self, cache: CacheService, ttl: int = 3600):
        self.cache = cache
        self.ttl = ttl

    async def create_session(
        self,
        chat_id: UUID,
        user_id: UUID,
        message: str,
        auth_token: str,
        selected_document_ids: list[UUID] | None = None,
        page_number: int | None = None,
        page_content: str | None = None,
    ) -> str:
        """Store a session for the chat, replacing any earlier one."""
        session = StreamSession(
            chat_id=chat_id,
            user_id=user_id,
            message=message,
            auth_token_hash=fingerprint(auth_token),
            selected_document_ids=selected_document_ids or [],
            page_number=page_number,
            page_content=page_content,
        )
        key = session_key(chat_id)
        await self.cache.set(key, session.model_dump(mode="json"), ttl=self.ttl)
        logger.debug(f"Stream session stored for chat {chat_id}")
        return key

    async def get_session(self, chat_id: UUID) -> StreamSession | None:
        data = await self.cache.get(session_key(chat_id))
        if data is None:
            return None
        return StreamSession.model_validate(data)

    async def delete_session(self, chat_id: UUID) -> None:
        await self.cache.delete(session_key(chat_id))

    @staticmethod
    def token_matches(session: StreamSession, token: str) -> bool:
        return hmac.compare_digest(session.auth_token_hash, fingerprint(token))
