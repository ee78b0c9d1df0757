"""
Capability set shared by all export storage backends.
"""
from typing import Optional, Protocol, runtime_checkable

from export_storage.conf import ExportStorageConf
from export_storage.errors import HandleClosedError
from export_storage.reader import ExportReader
from export_storage.writer import StagedWriter


@runtime_checkable
class ExportStorage(Protocol):
    """Protocol every backend satisfies.

    Backends share no implementation; the factory picks one from the
    configuration's provider.
    """

    def conf(self) -> ExportStorageConf:
        """Return the configuration this handle was built from."""
        ...

    async def put_file(self, key: str, timeout: Optional[float] = None) -> StagedWriter:
        """
        Allocate a staging file for ``key``.

        The destination is not touched until ``StagedWriter.finish()``.
        """
        ...

    async def read_file(self, key: str, timeout: Optional[float] = None) -> ExportReader:
        """
        Open a streaming read of ``key``.

        Raises:
            ObjectNotFoundError: If the key does not exist
        """
        ...

    async def delete(self, key: str, timeout: Optional[float] = None) -> None:
        """Remove ``key`` from the destination."""
        ...

    async def close(self) -> None:
        """Release the transport. Idempotent."""
        ...


def ensure_open(closed: bool, provider: str, key: Optional[str] = None) -> None:
    """Raise HandleClosedError if the handle has been closed."""
    if closed:
        raise HandleClosedError("Storage handle is closed", provider=provider, key=key)


def prefixed(prefix: str, key: str) -> str:
    """Join an object-store prefix and key."""
    prefix = prefix.strip("/")
    key = key.lstrip("/")
    if prefix:
        return f"{prefix}/{key}"
    return key
