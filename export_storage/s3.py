"""
S3-compatible export storage.

Supports AWS S3, MinIO, and other S3-compatible object stores.
"""
from contextlib import AsyncExitStack
from pathlib import Path
from typing import Any, Dict, Optional

import aioboto3
import aiohttp
import structlog
from botocore.exceptions import BotoCoreError, ClientError

from export_storage.base import ensure_open, prefixed
from export_storage.conf import ExportStorageConf
from export_storage.config import settings
from export_storage.errors import (
    CommitFailedError,
    DeleteFailedError,
    ObjectNotFoundError,
    ReadFailedError,
)
from export_storage.reader import ExportReader, iter_chunks, translate_errors
from export_storage.writer import StagedWriter, create_staging_file, with_deadline

logger = structlog.get_logger()

PROVIDER = "s3"

_NOT_FOUND_CODES = {"NoSuchKey", "404", "NotFound"}

_STREAM_ERRORS = (ClientError, BotoCoreError, aiohttp.ClientError)


def _is_not_found(error: ClientError) -> bool:
    return error.response.get("Error", {}).get("Code") in _NOT_FOUND_CODES


class S3ExportStorage:
    """Export storage in an S3 bucket under an optional prefix."""

    def __init__(self, conf: ExportStorageConf):
        """
        Initialize S3 export storage.

        Args:
            conf: Configuration with ``s3`` payload:
                - bucket: S3 bucket name
                - prefix: Path prefix within bucket (optional)
                - access_key / secret: Explicit credentials (optional, uses
                  the default credential chain otherwise)
                - endpoint: Custom endpoint for MinIO/compatible stores
                - region: AWS region (optional)
        """
        self._conf = conf
        s3 = conf.s3
        self.bucket = s3.bucket
        self.prefix = s3.prefix.strip("/")
        self.region = s3.region or settings.S3_DEFAULT_REGION
        self.endpoint_url = s3.endpoint or None

        self._session = None
        self._client_kwargs: Dict[str, Any] = {}
        self._closed = False

    def conf(self) -> ExportStorageConf:
        return self._conf

    def _get_client(self):
        """Get a client context manager, creating the session on first use."""
        if self._session is None:
            client_kwargs = {
                "region_name": self.region,
            }

            if self.endpoint_url:
                client_kwargs["endpoint_url"] = self.endpoint_url

            # Explicit credentials from configuration
            if self._conf.s3.access_key and self._conf.s3.secret:
                client_kwargs["aws_access_key_id"] = self._conf.s3.access_key
                client_kwargs["aws_secret_access_key"] = self._conf.s3.secret

            self._session = aioboto3.Session()
            self._client_kwargs = client_kwargs

        return self._session.client("s3", **self._client_kwargs)

    def _full_path(self, key: str) -> str:
        return prefixed(self.prefix, key)

    async def put_file(self, key: str, timeout: Optional[float] = None) -> StagedWriter:
        ensure_open(self._closed, PROVIDER, key)
        staging = await with_deadline(
            create_staging_file(settings.TEMP_PATH, key, PROVIDER), timeout, PROVIDER, key
        )

        async def commit(local_path: Path) -> None:
            await self._upload(key, local_path)

        return StagedWriter(key, staging, commit, PROVIDER)

    async def _upload(self, key: str, local_path: Path) -> None:
        ensure_open(self._closed, PROVIDER, key)
        object_key = self._full_path(key)

        try:
            async with self._get_client() as client:
                # Managed transfer switches to multipart for large files
                await client.upload_file(str(local_path), self.bucket, object_key)
        except (ClientError, BotoCoreError, OSError) as e:
            logger.error("S3 upload failed", bucket=self.bucket, object_key=object_key, error=str(e))
            raise CommitFailedError(
                f"Upload to s3://{self.bucket}/{object_key} failed: {e}",
                provider=PROVIDER,
                key=key,
            ) from e

        logger.info("Committed export file", provider=PROVIDER, bucket=self.bucket, key=object_key)

    async def read_file(self, key: str, timeout: Optional[float] = None) -> ExportReader:
        ensure_open(self._closed, PROVIDER, key)
        return await with_deadline(self._open(key), timeout, PROVIDER, key)

    async def _open(self, key: str) -> ExportReader:
        object_key = self._full_path(key)

        # The client must stay open for as long as the body is streamed
        stack = AsyncExitStack()
        try:
            client = await stack.enter_async_context(self._get_client())
            response = await client.get_object(Bucket=self.bucket, Key=object_key)
            body = await stack.enter_async_context(response["Body"])
        except ClientError as e:
            await stack.aclose()
            if _is_not_found(e):
                raise ObjectNotFoundError("Object not found", provider=PROVIDER, key=key) from None
            raise ReadFailedError(f"Cannot read object: {e}", provider=PROVIDER, key=key) from e
        except BotoCoreError as e:
            await stack.aclose()
            raise ReadFailedError(f"Cannot read object: {e}", provider=PROVIDER, key=key) from e
        except BaseException:
            await stack.aclose()
            raise

        chunks = iter_chunks(body.read, settings.READ_CHUNK_SIZE)
        return ExportReader(
            translate_errors(chunks, _STREAM_ERRORS, PROVIDER, key), stack.aclose
        )

    async def delete(self, key: str, timeout: Optional[float] = None) -> None:
        """Delete the object. S3 deletes are idempotent, so a missing key succeeds."""
        ensure_open(self._closed, PROVIDER, key)
        object_key = self._full_path(key)

        async def _delete() -> None:
            async with self._get_client() as client:
                await client.delete_object(Bucket=self.bucket, Key=object_key)

        try:
            await with_deadline(_delete(), timeout, PROVIDER, key)
        except (ClientError, BotoCoreError) as e:
            raise DeleteFailedError(f"Cannot delete object: {e}", provider=PROVIDER, key=key) from e

        logger.info("Deleted export file", provider=PROVIDER, bucket=self.bucket, key=object_key)

    async def close(self) -> None:
        """Release the S3 session."""
        self._closed = True
        self._session = None

    async def __aenter__(self) -> "S3ExportStorage":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def __repr__(self) -> str:
        return f"<S3ExportStorage bucket={self.bucket} prefix={self.prefix}>"
