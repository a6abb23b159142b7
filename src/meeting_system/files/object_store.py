"""S3-compatible object store adapter (MinIO in development).

Wraps the blocking boto3 client behind async methods by running each call
in a worker thread. The store has no transactions; the adapter only adds:

- idempotent delete: a missing key is the desired end state and is logged,
  not raised
- bucket creation on demand before the first write
- tenacity retry with exponential backoff for transient connection errors
- presigned GET URLs signed against the public endpoint
"""

from __future__ import annotations

import asyncio
import gzip
from typing import Any

import boto3
import structlog
from botocore.client import Config
from botocore.exceptions import ClientError, ConnectionClosedError, EndpointConnectionError
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from src.meeting_system.config import Settings, get_settings

logger = structlog.get_logger(__name__)

NOT_FOUND_CODES = frozenset({"NoSuchKey", "NotFound", "404"})
MISSING_BUCKET_CODES = frozenset({"NoSuchBucket", "NotFound", "404"})

_transient_retry = retry(
    retry=retry_if_exception_type((EndpointConnectionError, ConnectionClosedError)),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.5, min=0.5, max=5),
    reraise=True,
)


def _error_code(exc: ClientError) -> str:
    return str(exc.response.get("Error", {}).get("Code", ""))


def build_s3_client(endpoint_url: str, settings: Settings | None = None) -> Any:
    """Create a boto3 S3 client for a MinIO/S3 endpoint."""
    settings = settings or get_settings()
    return boto3.client(
        "s3",
        endpoint_url=endpoint_url,
        aws_access_key_id=settings.S3_ACCESS_KEY,
        aws_secret_access_key=settings.S3_SECRET_KEY,
        config=Config(signature_version="s3v4", s3={"addressing_style": "path"}),
        region_name=settings.S3_REGION,
    )


class ObjectStore:
    """Async facade over an S3 bucket API.

    Args:
        client: boto3 S3 client used for reads and writes.
        public_client: Client used only to sign URLs for end users. Defaults
            to ``client`` when the public endpoint is the same.
    """

    def __init__(self, client: Any, public_client: Any | None = None) -> None:
        self._client = client
        self._public_client = public_client or client
        self._known_buckets: set[str] = set()

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> ObjectStore:
        settings = settings or get_settings()
        client = build_s3_client(settings.S3_ENDPOINT_URL, settings)
        public_client = None
        if settings.public_endpoint_url != settings.S3_ENDPOINT_URL:
            public_client = build_s3_client(settings.public_endpoint_url, settings)
        return cls(client, public_client)

    async def ensure_bucket(self, bucket: str) -> None:
        """Create the bucket if it does not exist yet (checked once per bucket)."""
        if bucket in self._known_buckets:
            return
        try:
            await asyncio.to_thread(self._client.head_bucket, Bucket=bucket)
        except ClientError as exc:
            if _error_code(exc) not in MISSING_BUCKET_CODES:
                raise
            await asyncio.to_thread(self._client.create_bucket, Bucket=bucket)
            logger.info("object_store.bucket_created", bucket=bucket)
        self._known_buckets.add(bucket)

    @_transient_retry
    async def put(self, bucket: str, key: str, data: bytes, content_type: str) -> None:
        """Write a blob, replacing any existing object under the same key."""
        await asyncio.to_thread(
            self._client.put_object,
            Bucket=bucket,
            Key=key,
            Body=data,
            ContentType=content_type,
        )
        logger.debug("object_store.put", bucket=bucket, key=key, size_bytes=len(data))

    async def put_file(
        self,
        bucket: str,
        key: str,
        data: bytes,
        content_type: str,
        compression_limit: int = 0,
    ) -> None:
        """Write an uploaded file, gzip-compressing payloads above the limit.

        Args:
            compression_limit: Size in bytes above which the payload is
                stored gzip-compressed. 0 disables compression.
        """
        await self.ensure_bucket(bucket)
        if compression_limit and len(data) > compression_limit:
            compressed = gzip.compress(data)
            logger.info(
                "object_store.compressed",
                key=key,
                original_bytes=len(data),
                compressed_bytes=len(compressed),
            )
            await self.put(bucket, key, compressed, "application/gzip")
            return
        await self.put(bucket, key, data, content_type)

    async def delete(self, bucket: str, key: str) -> None:
        """Delete a blob. Deleting a key that does not exist succeeds."""
        try:
            await asyncio.to_thread(self._client.delete_object, Bucket=bucket, Key=key)
        except ClientError as exc:
            if _error_code(exc) not in NOT_FOUND_CODES:
                raise
            logger.warning("object_store.delete_missing", bucket=bucket, key=key)
            return
        logger.debug("object_store.deleted", bucket=bucket, key=key)

    async def presign_get(self, bucket: str, key: str, ttl_seconds: int = 300) -> str:
        """Return a short-lived GET URL for the blob."""
        return await asyncio.to_thread(
            self._public_client.generate_presigned_url,
            "get_object",
            Params={"Bucket": bucket, "Key": key},
            ExpiresIn=ttl_seconds,
        )
