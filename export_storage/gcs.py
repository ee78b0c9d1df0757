"""
Google Cloud Storage export storage.

google-cloud-storage is synchronous; its calls run in worker threads.
"""
import asyncio
from pathlib import Path
from typing import Optional

import structlog
from google.api_core.exceptions import GoogleAPIError, NotFound
from google.auth.exceptions import GoogleAuthError
from google.cloud import storage

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
from export_storage.writer import StagedWriter, create_staging_file, run_in_thread, with_deadline

logger = structlog.get_logger()

PROVIDER = "google_cloud"

_TRANSPORT_ERRORS = (GoogleAPIError, GoogleAuthError, OSError)


class GCSExportStorage:
    """Export storage in a GCS bucket under an optional prefix."""

    def __init__(self, conf: ExportStorageConf):
        """
        Initialize GCS export storage.

        Args:
            conf: Configuration with ``gcs`` payload:
                - bucket: GCS bucket name
                - prefix: Path prefix within bucket (optional)
                - project: GCP project ID (optional)
                - credentials_file: Path to service account JSON (optional,
                  application default credentials otherwise)
        """
        self._conf = conf
        self.bucket_name = conf.gcs.bucket
        self.prefix = conf.gcs.prefix.strip("/")
        self._client: Optional[storage.Client] = None
        self._closed = False

    def conf(self) -> ExportStorageConf:
        return self._conf

    def _get_client(self) -> storage.Client:
        """Get or create the GCS client. Credential lookup happens here."""
        if self._client is None:
            gcs = self._conf.gcs
            if gcs.credentials_file:
                self._client = storage.Client.from_service_account_json(
                    gcs.credentials_file, project=gcs.project or None
                )
            else:
                self._client = storage.Client(project=gcs.project or None)
        return self._client

    def _blob(self, key: str):
        return self._get_client().bucket(self.bucket_name).blob(prefixed(self.prefix, key))

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

        def _put() -> str:
            blob = self._blob(key)
            blob.upload_from_filename(str(local_path))
            return blob.name

        try:
            object_key = await asyncio.to_thread(_put)
        except _TRANSPORT_ERRORS as e:
            logger.error("GCS upload failed", bucket=self.bucket_name, key=key, error=str(e))
            raise CommitFailedError(
                f"Upload to gs://{self.bucket_name} failed: {e}", provider=PROVIDER, key=key
            ) from e

        logger.info("Committed export file", provider=PROVIDER, bucket=self.bucket_name, key=object_key)

    async def read_file(self, key: str, timeout: Optional[float] = None) -> ExportReader:
        ensure_open(self._closed, PROVIDER, key)

        def _open():
            blob = self._blob(key)
            # reload() surfaces a missing object before any bytes are read
            blob.reload()
            return blob.open("rb")

        try:
            f = await with_deadline(
                run_in_thread(_open, lambda reader: reader.close()), timeout, PROVIDER, key
            )
        except NotFound:
            raise ObjectNotFoundError("Object not found", provider=PROVIDER, key=key) from None
        except _TRANSPORT_ERRORS as e:
            raise ReadFailedError(f"Cannot read object: {e}", provider=PROVIDER, key=key) from e

        async def read(size: int) -> bytes:
            return await asyncio.to_thread(f.read, size)

        async def release() -> None:
            await asyncio.to_thread(f.close)

        chunks = iter_chunks(read, settings.READ_CHUNK_SIZE)
        return ExportReader(translate_errors(chunks, _TRANSPORT_ERRORS, PROVIDER, key), release)

    async def delete(self, key: str, timeout: Optional[float] = None) -> None:
        """Delete the object. A missing object raises ObjectNotFoundError."""
        ensure_open(self._closed, PROVIDER, key)

        def _delete() -> None:
            self._blob(key).delete()

        try:
            await with_deadline(asyncio.to_thread(_delete), timeout, PROVIDER, key)
        except NotFound:
            raise ObjectNotFoundError("Object not found", provider=PROVIDER, key=key) from None
        except _TRANSPORT_ERRORS as e:
            raise DeleteFailedError(f"Cannot delete object: {e}", provider=PROVIDER, key=key) from e

        logger.info("Deleted export file", provider=PROVIDER, bucket=self.bucket_name, key=key)

    async def close(self) -> None:
        """Close the GCS client's HTTP session."""
        if self._closed:
            return
        self._closed = True
        if self._client is not None:
            client, self._client = self._client, None
            await asyncio.to_thread(client.close)

    async def __aenter__(self) -> "GCSExportStorage":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def __repr__(self) -> str:
        return f"<GCSExportStorage bucket={self.bucket_name} prefix={self.prefix}>"
