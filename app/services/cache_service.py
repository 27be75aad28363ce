"""Short-lived key/value cache on Redis."""

import json
import logging
from typing import Any

from redis import asyncio as aioredis

logger = logging.getLogger(__name__)


class CacheService:
    """JSON values with a per-key TTL.

    Any client exposing the ``redis.asyncio`` ``get``/``set``/``delete``
    coroutine API can be injected.
    """

    def __init__(self, client):
        self.client = client

    @classmethod
    def from_url(cls, url: str) -> "CacheService":
        return cls(aioredis.from_url(url, decode_responses=True))

    async def set(self, key: str, value: Any, ttl: int) -> None:
        await self.client.set(key, json.dumps(value, default=str), ex=ttl)

    async def get(self, key: str) -> Any | None:
        raw = await self.client.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(f"Discarding undecodable cache entry {key}")
            return None

    async def delete(self, key: str) -> None:
        await self.client.delete(key)

    async def close(self) -> None:
        await self.client.aclose()
