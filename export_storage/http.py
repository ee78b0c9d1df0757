"""
HTTP export storage.

Uploads with PUT, downloads with GET and removes with DELETE against
``base_uri + key``. Authentication, if any, is carried in the base URI.
"""
import os
from pathlib import Path
from typing import Optional

import aiofiles
import httpx
import structlog

from export_storage.base import ensure_open
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

PROVIDER = "http"


class HttpExportStorage:
    """Export storage backed by a plain HTTP server."""

    def __init__(self, conf: ExportStorageConf, client: Optional[httpx.AsyncClient] = None):
        """
        Initialize HTTP export storage.

        Args:
            conf: Configuration whose ``http.base_uri`` is the server prefix
            client: Optional pre-built client; the handle owns and closes it
        """
        self._conf = conf
        self.base_uri = conf.http.base_uri
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(settings.HTTP_TIMEOUT),
            headers={"User-Agent": settings.HTTP_USER_AGENT},
        )
        self._closed = False

    def conf(self) -> ExportStorageConf:
        return self._conf

    def _url(self, key: str) -> str:
        return f"{self.base_uri.rstrip('/')}/{key.lstrip('/')}"

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
        url = self._url(key)

        try:
            size = os.path.getsize(local_path)
            async with aiofiles.open(local_path, "rb") as f:
                response = await self._client.put(
                    url,
                    content=iter_chunks(f.read, settings.READ_CHUNK_SIZE),
                    headers={
                        "Content-Length": str(size),
                        "Content-Type": "application/octet-stream",
                    },
                )
        except OSError as e:
            raise CommitFailedError(
                f"Cannot read staged file: {e}", provider=PROVIDER, key=key
            ) from e
        except httpx.HTTPError as e:
            logger.error("HTTP upload failed", url=url, error=str(e))
            raise CommitFailedError(
                f"PUT {url} failed: {e}", provider=PROVIDER, key=key
            ) from e

        if not response.is_success:
            logger.error("HTTP upload rejected", url=url, status_code=response.status_code)
            raise CommitFailedError(
                f"PUT {url} returned {response.status_code}", provider=PROVIDER, key=key
            )

        logger.info("Committed export file", provider=PROVIDER, key=key, size=size)

    async def read_file(self, key: str, timeout: Optional[float] = None) -> ExportReader:
        ensure_open(self._closed, PROVIDER, key)
        url = self._url(key)

        try:
            response = await with_deadline(
                self._client.send(self._client.build_request("GET", url), stream=True),
                timeout,
                PROVIDER,
                key,
            )
        except httpx.HTTPError as e:
            raise ReadFailedError(f"GET {url} failed: {e}", provider=PROVIDER, key=key) from e

        if response.status_code == 404:
            await response.aclose()
            raise ObjectNotFoundError("Object not found", provider=PROVIDER, key=key)
        if not response.is_success:
            await response.aclose()
            raise ReadFailedError(
                f"GET {url} returned {response.status_code}", provider=PROVIDER, key=key
            )

        chunks = response.aiter_bytes(settings.READ_CHUNK_SIZE)
        return ExportReader(
            translate_errors(chunks, (httpx.HTTPError,), PROVIDER, key), response.aclose
        )

    async def delete(self, key: str, timeout: Optional[float] = None) -> None:
        """Issue DELETE. A 404 raises ObjectNotFoundError."""
        ensure_open(self._closed, PROVIDER, key)
        url = self._url(key)

        try:
            response = await with_deadline(self._client.delete(url), timeout, PROVIDER, key)
        except httpx.HTTPError as e:
            raise DeleteFailedError(f"DELETE {url} failed: {e}", provider=PROVIDER, key=key) from e

        if response.status_code == 404:
            raise ObjectNotFoundError("Object not found", provider=PROVIDER, key=key)
        if not response.is_success:
            raise DeleteFailedError(
                f"DELETE {url} returned {response.status_code}", provider=PROVIDER, key=key
            )

        logger.info("Deleted export file", provider=PROVIDER, key=key)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._client.aclose()

    async def __aenter__(self) -> "HttpExportStorage":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def __repr__(self) -> str:
        return f"<HttpExportStorage base_uri={self.base_uri}>"
