"""
Local filesystem export storage.

Also serves network mounts (NFS, SMB) that appear as local paths.
"""
from pathlib import Path
from typing import Optional

import aiofiles
import aiofiles.os
import structlog

from export_storage.base import ensure_open
from export_storage.conf import ExportStorageConf
from export_storage.config import settings
from export_storage.errors import (
    CommitFailedError,
    DeleteFailedError,
    InvalidKeyError,
    ObjectNotFoundError,
    ReadFailedError,
)
from export_storage.reader import ExportReader, iter_chunks, translate_errors
from export_storage.writer import StagedWriter, create_staging_file, with_deadline

logger = structlog.get_logger()

PROVIDER = "local"


class LocalExportStorage:
    """Export storage rooted at a local directory."""

    def __init__(self, conf: ExportStorageConf):
        """
        Initialize local export storage.

        Args:
            conf: Configuration whose ``local.path`` is the root directory.
                The directory is created on first write.
        """
        self._conf = conf
        self.base_path = Path(conf.local.path).expanduser().resolve()
        self._closed = False

    def conf(self) -> ExportStorageConf:
        return self._conf

    def _resolve_path(self, key: str) -> Path:
        """
        Resolve and validate a key.

        Raises:
            InvalidKeyError: If the key would escape the base directory
        """
        if not key or not key.strip("/"):
            raise InvalidKeyError("Key must not be empty", provider=PROVIDER, key=key)

        full_path = (self.base_path / key.lstrip("/")).resolve()

        try:
            full_path.relative_to(self.base_path)
        except ValueError:
            raise InvalidKeyError(
                "Key would escape storage directory", provider=PROVIDER, key=key
            )

        return full_path

    async def put_file(self, key: str, timeout: Optional[float] = None) -> StagedWriter:
        """Stage inside the target directory so the commit is a same-volume rename."""
        ensure_open(self._closed, PROVIDER, key)
        full_path = self._resolve_path(key)

        staging = await with_deadline(
            create_staging_file(full_path.parent, key, PROVIDER), timeout, PROVIDER, key
        )

        async def commit(local_path: Path) -> None:
            ensure_open(self._closed, PROVIDER, key)
            try:
                await aiofiles.os.replace(local_path, full_path)
            except OSError as e:
                logger.error("Local commit failed", key=key, error=str(e))
                raise CommitFailedError(
                    f"Cannot move staged file into place: {e}", provider=PROVIDER, key=key
                ) from e
            logger.info("Committed export file", provider=PROVIDER, key=key, path=str(full_path))

        return StagedWriter(key, staging, commit, PROVIDER)

    async def read_file(self, key: str, timeout: Optional[float] = None) -> ExportReader:
        ensure_open(self._closed, PROVIDER, key)
        full_path = self._resolve_path(key)

        try:
            f = await with_deadline(aiofiles.open(full_path, "rb"), timeout, PROVIDER, key)
        except FileNotFoundError:
            raise ObjectNotFoundError("File not found", provider=PROVIDER, key=key) from None
        except IsADirectoryError as e:
            raise ReadFailedError("Key is a directory", provider=PROVIDER, key=key) from e
        except OSError as e:
            raise ReadFailedError(f"Cannot open file: {e}", provider=PROVIDER, key=key) from e

        chunks = iter_chunks(f.read, settings.READ_CHUNK_SIZE)
        return ExportReader(translate_errors(chunks, (OSError,), PROVIDER, key), f.close)

    async def delete(self, key: str, timeout: Optional[float] = None) -> None:
        """Remove the file. A missing file raises ObjectNotFoundError."""
        ensure_open(self._closed, PROVIDER, key)
        full_path = self._resolve_path(key)

        try:
            await with_deadline(aiofiles.os.remove(full_path), timeout, PROVIDER, key)
        except FileNotFoundError:
            raise ObjectNotFoundError("File not found", provider=PROVIDER, key=key) from None
        except OSError as e:
            raise DeleteFailedError(f"Cannot remove file: {e}", provider=PROVIDER, key=key) from e

        logger.info("Deleted export file", provider=PROVIDER, key=key)

    async def close(self) -> None:
        self._closed = True

    async def __aenter__(self) -> "LocalExportStorage":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def __repr__(self) -> str:
        return f"<LocalExportStorage base_path={self.base_path}>"
