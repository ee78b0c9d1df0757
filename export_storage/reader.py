"""
Streaming reader returned by ``ExportStorage.read_file``.
"""
from typing import AsyncIterator, Awaitable, Callable, Optional, Tuple, Type

from export_storage.errors import ReadFailedError


async def iter_chunks(
    read: Callable[[int], Awaitable[bytes]], chunk_size: int
) -> AsyncIterator[bytes]:
    """Yield chunks from an async ``read(n)`` callable until it returns b''."""
    while True:
        chunk = await read(chunk_size)
        if not chunk:
            break
        yield chunk


async def translate_errors(
    chunks: AsyncIterator[bytes],
    errors: Tuple[Type[BaseException], ...],
    provider: str,
    key: str,
) -> AsyncIterator[bytes]:
    """
    Re-raise ``errors`` from a backend's chunk stream as ReadFailedError.

    The wrapped stream is closed when this one is.
    """
    try:
        async for chunk in chunks:
            yield chunk
    except errors as e:
        raise ReadFailedError(
            f"Read interrupted: {e}", provider=provider, key=key
        ) from e
    finally:
        close = getattr(chunks, "aclose", None)
        if close is not None:
            await close()


class ExportReader:
    """
    Sequential byte stream over a stored object.

    The reader holds an open download (file handle, HTTP response, SDK
    stream) and must be released, either with ``aclose()`` or by using it as
    an async context manager::

        async with await storage.read_file("backup-1") as reader:
            async for chunk in reader:
                ...
    """

    def __init__(
        self,
        chunks: AsyncIterator[bytes],
        release: Optional[Callable[[], Awaitable[None]]] = None,
    ):
        self._chunks = chunks
        self._release = release
        self._buffer = bytearray()
        self._exhausted = False
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def _next_chunk(self) -> bytes:
        if self._exhausted:
            return b""
        try:
            return await self._chunks.__anext__()
        except StopAsyncIteration:
            self._exhausted = True
            return b""

    async def read(self, size: int = -1) -> bytes:
        """
        Read up to ``size`` bytes, or everything left if ``size`` is negative.

        Returns b'' once the stream is exhausted.
        """
        if self._closed:
            raise ValueError("I/O operation on closed reader")

        if size is None or size < 0:
            while True:
                chunk = await self._next_chunk()
                if not chunk:
                    break
                self._buffer.extend(chunk)
            data = bytes(self._buffer)
            self._buffer.clear()
            return data

        while len(self._buffer) < size:
            chunk = await self._next_chunk()
            if not chunk:
                break
            self._buffer.extend(chunk)

        data = bytes(self._buffer[:size])
        del self._buffer[:size]
        return data

    def __aiter__(self):
        return self

    async def __anext__(self) -> bytes:
        if self._closed:
            raise ValueError("I/O operation on closed reader")
        if self._buffer:
            data = bytes(self._buffer)
            self._buffer.clear()
            return data
        chunk = await self._next_chunk()
        if not chunk:
            raise StopAsyncIteration
        return chunk

    async def aclose(self) -> None:
        """Release the underlying stream. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        self._buffer.clear()

        try:
            close_chunks = getattr(self._chunks, "aclose", None)
            if close_chunks is not None:
                await close_chunks()
        finally:
            if self._release is not None:
                await self._release()

    async def __aenter__(self) -> "ExportReader":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()
