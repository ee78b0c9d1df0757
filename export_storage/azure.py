"""
Azure Blob Storage export storage.
"""
import os
from pathlib import Path
from typing import Optional

import structlog
from azure.core.exceptions import AzureError, ResourceNotFoundError
from azure.storage.blob.aio import BlobServiceClient

from export_storage.base import ensure_open, prefixed
from export_storage.conf import ExportStorageConf
from export_storage.config import settings
from export_storage.errors import (
    CommitFailedError,
    DeleteFailedError,
    ObjectNotFoundError,
    ReadFailedError,
)
from export_storage.reader import ExportReader, translate_errors
from export_storage.writer import StagedWriter, create_staging_file, with_deadline

logger = structlog.get_logger()

PROVIDER = "azure"


class AzureExportStorage:
    """Export storage in an Azure Blob container under an optional prefix."""

    def __init__(self, conf: ExportStorageConf):
        """
        Initialize Azure export storage.

        Args:
            conf: Configuration with ``azure`` payload:
                - container: Azure container name
                - prefix: Path prefix within container (optional)
                - account_name: Storage account name
                - account_key: Storage account shared key
        """
        self._conf = conf
        self.container = conf.azure.container
        self.prefix = conf.azure.prefix.strip("/")
        self.account_url = f"https://{conf.azure.account_name}.blob.core.windows.net"
        self._service: Optional[BlobServiceClient] = None
        self._closed = False

    def conf(self) -> ExportStorageConf:
        return self._conf

    def _get_service(self) -> BlobServiceClient:
        if self._service is None:
            self._service = BlobServiceClient(
                account_url=self.account_url,
                credential={
                    "account_name": self._conf.azure.account_name,
                    "account_key": self._conf.azure.account_key,
                },
            )
        return self._service

    def _blob_client(self, key: str):
        container = self._get_service().get_container_client(self.container)
        return container.get_blob_client(prefixed(self.prefix, key))

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
        blob_client = self._blob_client(key)

        try:
            size = os.path.getsize(local_path)
            with open(local_path, "rb") as data:
                await blob_client.upload_blob(data, length=size, overwrite=True)
        except (AzureError, OSError) as e:
            logger.error("Azure upload failed", container=self.container, key=key, error=str(e))
            raise CommitFailedError(
                f"Upload to container {self.container} failed: {e}",
                provider=PROVIDER,
                key=key,
            ) from e

        logger.info(
            "Committed export file", provider=PROVIDER, container=self.container, key=key, size=size
        )

    async def read_file(self, key: str, timeout: Optional[float] = None) -> ExportReader:
        ensure_open(self._closed, PROVIDER, key)
        blob_client = self._blob_client(key)

        try:
            downloader = await with_deadline(blob_client.download_blob(), timeout, PROVIDER, key)
        except ResourceNotFoundError:
            raise ObjectNotFoundError("Blob not found", provider=PROVIDER, key=key) from None
        except AzureError as e:
            raise ReadFailedError(f"Cannot read blob: {e}", provider=PROVIDER, key=key) from e

        return ExportReader(
            translate_errors(downloader.chunks(), (AzureError,), PROVIDER, key)
        )

    async def delete(self, key: str, timeout: Optional[float] = None) -> None:
        """Delete the blob. A missing blob raises ObjectNotFoundError."""
        ensure_open(self._closed, PROVIDER, key)
        blob_client = self._blob_client(key)

        try:
            await with_deadline(blob_client.delete_blob(), timeout, PROVIDER, key)
        except ResourceNotFoundError:
            raise ObjectNotFoundError("Blob not found", provider=PROVIDER, key=key) from None
        except AzureError as e:
            raise DeleteFailedError(f"Cannot delete blob: {e}", provider=PROVIDER, key=key) from e

        logger.info("Deleted export file", provider=PROVIDER, container=self.container, key=key)

    async def close(self) -> None:
        """Close the blob service client and its HTTP session."""
        if self._closed:
            return
        self._closed = True
        if self._service is not None:
            service, self._service = self._service, None
            await service.close()

    async def __aenter__(self) -> "AzureExportStorage":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def __repr__(self) -> str:
        return f"<AzureExportStorage container={self.container} prefix={self.prefix}>"
