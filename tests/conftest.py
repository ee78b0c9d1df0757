"""
Shared fixtures for export storage tests.
"""
import os

import aiofiles
import pytest

from export_storage import ObjectNotFoundError, WriterState
from export_storage.config import settings
from export_storage.logger import setup_logging

setup_logging(level="warning")

MiB = 1024 * 1024


@pytest.fixture(autouse=True)
def staging_dir(tmp_path, monkeypatch):
    """Keep staging files for remote providers inside the test's temp dir."""
    path = tmp_path / "staging"
    path.mkdir()
    monkeypatch.setattr(settings, "TEMP_PATH", str(path))
    return path


@pytest.fixture
def random_content():
    """8MiB of random bytes."""
    return os.urandom(8 * MiB)


async def _write_staged(writer, content: bytes) -> None:
    async with aiofiles.open(writer.local_path, "wb") as f:
        await f.write(content)


@pytest.fixture
def write_staged():
    """Populate a writer's staging file."""
    return _write_staged


@pytest.fixture
def export_round_trip():
    """
    Write, read back, delete and confirm absence of one export file.

    Mirrors the lifecycle a backup job drives against any destination.
    """

    async def run(storage, content: bytes, key: str = "testing-123") -> None:
        async with await storage.put_file(key) as writer:
            await _write_staged(writer, content)
            await writer.finish()
            assert writer.state is WriterState.COMMITTED
        assert not writer.local_path.exists()

        async with await storage.read_file(key) as reader:
            assert await reader.read() == content

        await storage.delete(key)

        with pytest.raises(ObjectNotFoundError):
            reader = await storage.read_file(key)
            await reader.aclose()

    return run
