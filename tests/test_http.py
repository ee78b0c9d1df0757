"""
Tests for the HTTP backend against a mock storage server.

The server runs uvicorn on a background thread and stores PUT bodies in a
local directory, so every round trip goes through real HTTP requests.
"""
import socket
import threading
import time
from pathlib import Path

import aiofiles
import httpx
import pytest
import uvicorn
from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.responses import FileResponse

from export_storage import (
    CommitFailedError,
    DeleteFailedError,
    ExportStorageConf,
    HandleClosedError,
    HttpConf,
    ObjectNotFoundError,
    Provider,
    ReadFailedError,
    WriterState,
    make_export_storage,
)
from export_storage.http import HttpExportStorage


def create_mock_storage_app(root: Path) -> FastAPI:
    """Minimal PUT/GET/DELETE file server over ``root``."""
    app = FastAPI()

    @app.put("/readonly/{name}")
    async def put_readonly(name: str):
        raise HTTPException(status_code=403, detail="read-only")

    @app.delete("/readonly/{name}")
    async def delete_readonly(name: str):
        raise HTTPException(status_code=403, detail="read-only")

    @app.put("/{name}")
    async def put_file(name: str, request: Request):
        async with aiofiles.open(root / Path(name).name, "wb") as f:
            async for chunk in request.stream():
                await f.write(chunk)
        return Response(status_code=201)

    @app.get("/{name}")
    async def get_file(name: str):
        path = root / Path(name).name
        if not path.is_file():
            raise HTTPException(status_code=404, detail="not found")
        return FileResponse(path)

    @app.delete("/{name}")
    async def delete_file(name: str):
        path = root / Path(name).name
        if not path.is_file():
            raise HTTPException(status_code=404, detail="not found")
        path.unlink()
        return Response(status_code=204)

    return app


@pytest.fixture
def mock_server(tmp_path):
    """Serve the mock storage app; yields (base_uri, served_directory)."""
    root = tmp_path / "served"
    root.mkdir()

    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    sock.bind(("127.0.0.1", 0))
    host, port = sock.getsockname()

    config = uvicorn.Config(
        create_mock_storage_app(root), log_level="warning", lifespan="off"
    )
    server = uvicorn.Server(config)
    thread = threading.Thread(target=server.run, kwargs={"sockets": [sock]}, daemon=True)
    thread.start()

    deadline = time.monotonic() + 10
    while not server.started:
        if time.monotonic() > deadline:
            raise RuntimeError("Mock storage server did not start")
        time.sleep(0.01)

    yield f"http://{host}:{port}/", root

    server.should_exit = True
    thread.join(timeout=10)
    sock.close()


def http_conf(base_uri: str) -> ExportStorageConf:
    return ExportStorageConf(provider=Provider.HTTP, http=HttpConf(base_uri=base_uri))


class TestHttpExportStorage:
    """HTTP PUT/GET/DELETE semantics."""

    @pytest.mark.asyncio
    @pytest.mark.slow
    async def test_put_http(self, mock_server, random_content, export_round_trip):
        base_uri, _ = mock_server
        conf = http_conf(base_uri)

        async with make_export_storage(conf) as storage:
            assert storage.conf() == conf
            await export_round_trip(storage, random_content)

    @pytest.mark.asyncio
    async def test_empty_file(self, mock_server, export_round_trip):
        base_uri, _ = mock_server

        async with make_export_storage(http_conf(base_uri)) as storage:
            await export_round_trip(storage, b"")

    @pytest.mark.asyncio
    async def test_nothing_sent_before_finish(self, mock_server, write_staged):
        base_uri, root = mock_server

        async with make_export_storage(http_conf(base_uri)) as storage:
            async with await storage.put_file("pending") as writer:
                await write_staged(writer, b"bytes")
                assert list(root.iterdir()) == []

                await writer.finish()

        assert (root / "pending").read_bytes() == b"bytes"

    @pytest.mark.asyncio
    async def test_rejected_commit_keeps_staging_file(self, mock_server, write_staged):
        base_uri, _ = mock_server

        async with make_export_storage(http_conf(base_uri + "readonly/")) as storage:
            writer = await storage.put_file("k")
            try:
                await write_staged(writer, b"data")

                with pytest.raises(CommitFailedError) as exc_info:
                    await writer.finish()

                assert "403" in str(exc_info.value)
                assert writer.state is WriterState.FAILED
                assert writer.local_path.exists()
            finally:
                writer.cleanup()

            assert not writer.local_path.exists()

    @pytest.mark.asyncio
    async def test_unreachable_destination(self, write_staged):
        # Nothing listens on port 1
        async with make_export_storage(http_conf("http://127.0.0.1:1/")) as storage:
            async with await storage.put_file("k") as writer:
                await write_staged(writer, b"data")

                with pytest.raises(CommitFailedError):
                    await writer.finish()

                assert writer.local_path.exists()

            assert not writer.local_path.exists()

    @pytest.mark.asyncio
    async def test_read_missing(self, mock_server):
        base_uri, _ = mock_server

        async with make_export_storage(http_conf(base_uri)) as storage:
            with pytest.raises(ObjectNotFoundError):
                await storage.read_file("missing")

    @pytest.mark.asyncio
    async def test_delete_missing(self, mock_server):
        base_uri, _ = mock_server

        async with make_export_storage(http_conf(base_uri)) as storage:
            with pytest.raises(ObjectNotFoundError):
                await storage.delete("missing")

    @pytest.mark.asyncio
    async def test_delete_rejected(self, mock_server):
        base_uri, _ = mock_server

        async with make_export_storage(http_conf(base_uri + "readonly/")) as storage:
            with pytest.raises(DeleteFailedError):
                await storage.delete("k")

    @pytest.mark.asyncio
    async def test_streamed_read(self, mock_server, write_staged):
        base_uri, _ = mock_server
        content = bytes(range(256)) * 4096

        async with make_export_storage(http_conf(base_uri)) as storage:
            async with await storage.put_file("stream") as writer:
                await write_staged(writer, content)
                await writer.finish()

            received = bytearray()
            async with await storage.read_file("stream") as reader:
                async for chunk in reader:
                    received.extend(chunk)

            assert bytes(received) == content

    @pytest.mark.asyncio
    async def test_connection_drops_mid_read(self):
        async def dropped_body():
            yield b"0123"
            raise httpx.ReadError("connection reset by peer")

        def handler(request):
            return httpx.Response(200, content=dropped_body())

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        async with HttpExportStorage(http_conf("http://storage.test/"), client=client) as storage:
            async with await storage.read_file("k") as reader:
                with pytest.raises(ReadFailedError) as exc_info:
                    await reader.read()

        assert exc_info.value.provider == "http"
        assert isinstance(exc_info.value.__cause__, httpx.ReadError)

    @pytest.mark.asyncio
    async def test_closed_handle(self, write_staged):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(201)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        storage = HttpExportStorage(http_conf("http://storage.test/"), client=client)
        writer = await storage.put_file("k")
        await write_staged(writer, b"data")
        await storage.close()

        with pytest.raises(HandleClosedError):
            await storage.put_file("k")
        with pytest.raises(HandleClosedError):
            await storage.read_file("k")
        with pytest.raises(HandleClosedError):
            await storage.delete("k")
        with pytest.raises(HandleClosedError):
            await writer.finish()

        writer.cleanup()
        assert not writer.local_path.exists()
        assert requests == []
        assert client.is_closed
