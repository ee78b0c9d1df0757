"""
Exceptions raised by export storage backends.

Every error carries the provider and key it relates to (when known) so callers
can decide whether to retry or report.
"""
from typing import Optional


class ExportStorageError(Exception):
    """Base exception for export storage operations."""

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        key: Optional[str] = None,
    ):
        super().__init__(message)
        self.provider = provider
        self.key = key

    def __str__(self) -> str:
        message = super().__str__()
        context = []
        if self.provider:
            context.append(f"provider={self.provider}")
        if self.key is not None:
            context.append(f"key={self.key!r}")
        if context:
            return f"{message} ({', '.join(context)})"
        return message


class InvalidConfigError(ExportStorageError):
    """Configuration is missing required fields or is inconsistent."""
    pass


class UnsupportedProviderError(ExportStorageError):
    """No backend implements the requested provider."""
    pass


class MalformedURIError(ExportStorageError):
    """A destination URI could not be decoded."""
    pass


class InvalidKeyError(ExportStorageError, ValueError):
    """Key would resolve outside the destination root."""
    pass


class ObjectNotFoundError(ExportStorageError):
    """Read or delete target does not exist."""
    pass


class ReadFailedError(ExportStorageError):
    """Destination rejected a read for a reason other than a missing object."""
    pass


class CommitFailedError(ExportStorageError):
    """Staging or committing a file to the destination failed."""
    pass


class DeleteFailedError(ExportStorageError):
    """Destination rejected a delete."""
    pass


class HandleClosedError(ExportStorageError):
    """Operation attempted on a closed backend handle."""
    pass


class InvalidWriterStateError(ExportStorageError):
    """Staged writer used outside its lifecycle."""
    pass


class OperationCanceledError(ExportStorageError):
    """Operation deadline expired before it completed."""
    pass
