"""
Staged writer: buffers an export file on local disk, then commits it.

Typical use::

    async with await storage.put_file("backup-1") as writer:
        produce_file(writer.local_path)
        await writer.finish()

Leaving the ``async with`` block always removes the staging file. Callers
that do not use the context manager must call ``cleanup()`` in a
``finally`` block.
"""
import asyncio
import functools
import os
import re
import tempfile
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, TypeVar, Union

import structlog

from export_storage.errors import (
    CommitFailedError,
    InvalidWriterStateError,
    OperationCanceledError,
)

logger = structlog.get_logger()

CommitFn = Callable[[Path], Awaitable[None]]

T = TypeVar("T")

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


class WriterState(str, Enum):
    OPEN = "open"
    COMMITTED = "committed"
    FAILED = "failed"
    RELEASED = "released"


async def with_deadline(
    aw: Awaitable,
    timeout: Optional[float],
    provider: str,
    key: Optional[str] = None,
):
    """
    Await ``aw``, converting an expired deadline into OperationCanceledError.

    Task cancellation is not converted; ``asyncio.CancelledError`` propagates.
    """
    if timeout is None:
        return await aw
    try:
        return await asyncio.wait_for(aw, timeout)
    except asyncio.TimeoutError:
        raise OperationCanceledError(
            f"Operation did not complete within {timeout}s",
            provider=provider,
            key=key,
        ) from None


async def run_in_thread(fn: Callable[[], T], discard: Callable[[T], Any]) -> T:
    """
    Run ``fn`` in a worker thread.

    A worker thread cannot be interrupted. If the caller is cancelled or
    times out first, ``discard`` is applied to the result once the thread
    finishes.
    """
    task = asyncio.ensure_future(asyncio.to_thread(fn))
    try:
        return await asyncio.shield(task)
    except asyncio.CancelledError:
        task.add_done_callback(functools.partial(_discard_result, discard))
        raise


def _discard_result(discard: Callable[[Any], Any], task: asyncio.Future) -> None:
    if task.cancelled() or task.exception() is not None:
        return
    try:
        discard(task.result())
    except OSError as e:
        logger.warning("Failed to discard abandoned result", error=str(e))


def _remove_file(path: str) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass


async def create_staging_file(
    directory: Union[str, Path], key: str, provider: str
) -> Path:
    """
    Create an empty private temporary file for staging ``key``.

    Raises:
        CommitFailedError: If the file cannot be created
    """
    name = _UNSAFE_CHARS.sub("_", os.path.basename(key.rstrip("/"))) or "export"

    def _create() -> str:
        os.makedirs(directory, exist_ok=True)
        fd, path = tempfile.mkstemp(dir=directory, prefix=f".{name}.", suffix=".tmp")
        os.close(fd)
        return path

    try:
        path = await run_in_thread(_create, _remove_file)
    except OSError as e:
        raise CommitFailedError(
            f"Cannot create staging file in {directory}: {e}",
            provider=provider,
            key=key,
        ) from e
    return Path(path)


class StagedWriter:
    """
    Scoped resource owning one staging file for a single write.

    States: ``OPEN`` until ``finish()``; then ``COMMITTED`` or ``FAILED``.
    ``cleanup()`` moves any state to ``RELEASED``.
    """

    def __init__(self, key: str, local_path: Path, commit: CommitFn, provider: str):
        self.key = key
        self.provider = provider
        self._local_path = Path(local_path)
        self._commit = commit
        self._state = WriterState.OPEN

    @property
    def local_path(self) -> Path:
        """Local file the caller populates before ``finish()``."""
        return self._local_path

    @property
    def state(self) -> WriterState:
        return self._state

    async def finish(self, timeout: Optional[float] = None) -> None:
        """
        Commit the staged file to the destination.

        Args:
            timeout: Seconds to allow for the commit

        Raises:
            InvalidWriterStateError: If called after finish() or cleanup()
            CommitFailedError: If the destination rejects the file
            OperationCanceledError: If the timeout expires
        """
        if self._state is not WriterState.OPEN:
            raise InvalidWriterStateError(
                f"Cannot finish writer in state '{self._state.value}'",
                provider=self.provider,
                key=self.key,
            )

        try:
            await with_deadline(
                self._commit(self._local_path), timeout, self.provider, self.key
            )
        except BaseException:
            self._state = WriterState.FAILED
            raise

        self._state = WriterState.COMMITTED

    def cleanup(self) -> None:
        """
        Remove the staging file. Safe to call more than once.

        A staging file that is already gone (e.g. renamed into place by
        the commit) is not an error.
        """
        if self._state is WriterState.RELEASED:
            return

        try:
            os.remove(self._local_path)
        except FileNotFoundError:
            pass

        self._state = WriterState.RELEASED

    async def __aenter__(self) -> "StagedWriter":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            self.cleanup()
        except OSError as e:
            logger.warning(
                "Failed to remove staging file",
                provider=self.provider,
                key=self.key,
                path=str(self._local_path),
                error=str(e),
            )

    def __repr__(self) -> str:
        return (
            f"<StagedWriter provider={self.provider} key={self.key!r} "
            f"state={self._state.value}>"
        )
