"""S3 object storage for uploaded PDFs."""

import asyncio
import logging
import re
import time
from functools import partial
from uuid import UUID

import boto3

from app.core.config import Settings

logger = logging.getLogger(__name__)

_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


class StorageService:
    """Put, sign and delete objects in one bucket.

    boto3 is blocking, so every call runs in the default executor.
    """

    def __init__(self, client, bucket: str, signed_url_ttl: int = 86400):
        self.client = client
        self.bucket = bucket
        self.signed_url_ttl = signed_url_ttl

    @classmethod
    def from_settings(cls, config: Settings) -> "StorageService":
        client = boto3.client(
            "s3",
            region_name=config.s3_region,
            endpoint_url=config.s3_endpoint_url,
            aws_access_key_id=config.aws_access_key_id,
            aws_secret_access_key=config.aws_secret_access_key,
        )
        return cls(client, bucket=config.s3_bucket_name, signed_url_ttl=config.signed_url_ttl)

    @staticmethod
    def generate_key(user_id: UUID, file_name: str, timestamp_ms: int | None = None) -> str:
        stamp = timestamp_ms if timestamp_ms is not None else int(time.time() * 1000)
        safe_name = _UNSAFE_KEY_CHARS.sub("_", file_name).strip("_") or "document.pdf"
        return f"{user_id}/{stamp}/{safe_name}"

    async def _run(self, func, *args, **kwargs):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, partial(func, *args, **kwargs))

    async def put_object(self, key: str, body: bytes, content_type: str) -> dict:
        await self._run(
            self.client.put_object,
            Bucket=self.bucket,
            Key=key,
            Body=body,
            ContentType=content_type,
        )
        logger.info(f"Stored object {key} ({len(body)} bytes)")
        return {"key": key, "url": f"s3://{self.bucket}/{key}"}

    async def generate_signed_url(self, key: str, expires_in: int | None = None) -> str:
        return await self._run(
            self.client.generate_presigned_url,
            "get_object",
            Params={"Bucket": self.bucket, "Key": key},
            ExpiresIn=expires_in or self.signed_url_ttl,
        )

    async def delete_object(self, key: str) -> None:
        await self._run(self.client.delete_object, Bucket=self.bucket, Key=key)
        logger.info(f"Deleted object {key}")
