"""
Tests for the local filesystem backend.
"""
import pytest
import pytest_asyncio

from export_storage import (
    CommitFailedError,
    ExportStorageConf,
    HandleClosedError,
    InvalidKeyError,
    LocalFileConf,
    ObjectNotFoundError,
    Provider,
    ReadFailedError,
    make_export_storage,
)
from export_storage import local as local_module


@pytest.fixture
def local_conf(tmp_path):
    return ExportStorageConf(
        provider=Provider.LOCAL, local=LocalFileConf(path=str(tmp_path / "exports"))
    )


@pytest_asyncio.fixture
async def local_storage(local_conf):
    storage = make_export_storage(local_conf)
    yield storage
    await storage.close()


class TestLocalExportStorage:
    """Round trips and failure modes on local disk."""

    @pytest.mark.asyncio
    @pytest.mark.slow
    async def test_put_local(self, local_conf, random_content, export_round_trip):
        async with make_export_storage(local_conf) as storage:
            assert storage.conf() == local_conf
            await export_round_trip(storage, random_content)

    @pytest.mark.asyncio
    async def test_empty_file(self, local_conf, export_round_trip):
        async with make_export_storage(local_conf) as storage:
            await export_round_trip(storage, b"")

    @pytest.mark.asyncio
    async def test_stages_inside_target_directory(self, local_conf, tmp_path):
        async with make_export_storage(local_conf) as storage:
            writer = await storage.put_file("2024/06/backup.sst")
            try:
                target_dir = tmp_path / "exports" / "2024" / "06"
                assert writer.local_path.parent == target_dir
                assert not (target_dir / "backup.sst").exists()

                writer.local_path.write_bytes(b"data")
                await writer.finish()

                assert (target_dir / "backup.sst").read_bytes() == b"data"
            finally:
                writer.cleanup()

    @pytest.mark.asyncio
    async def test_cleanup_without_finish_leaves_nothing(self, local_conf, tmp_path):
        async with make_export_storage(local_conf) as storage:
            async with await storage.put_file("abandoned") as writer:
                writer.local_path.write_bytes(b"half written")

        assert list((tmp_path / "exports").iterdir()) == []

    @pytest.mark.asyncio
    async def test_overwrite_last_commit_wins(self, local_conf, write_staged):
        async with make_export_storage(local_conf) as storage:
            first = await storage.put_file("k")
            second = await storage.put_file("k")
            await write_staged(first, b"first")
            await write_staged(second, b"second")

            await first.finish()
            await second.finish()
            first.cleanup()
            second.cleanup()

            async with await storage.read_file("k") as reader:
                assert await reader.read() == b"second"

    @pytest.mark.asyncio
    async def test_read_missing(self, local_storage):
        with pytest.raises(ObjectNotFoundError) as exc_info:
            await local_storage.read_file("nope")

        assert exc_info.value.provider == "local"
        assert exc_info.value.key == "nope"

    @pytest.mark.asyncio
    async def test_delete_missing(self, local_storage):
        with pytest.raises(ObjectNotFoundError):
            await local_storage.delete("nope")

    @pytest.mark.asyncio
    async def test_partial_reads(self, local_storage, write_staged):
        async with await local_storage.put_file("chunks") as writer:
            await write_staged(writer, b"0123456789")
            await writer.finish()

        async with await local_storage.read_file("chunks") as reader:
            assert await reader.read(3) == b"012"
            assert await reader.read(4) == b"3456"
            assert await reader.read() == b"789"
            assert await reader.read(1) == b""

    @pytest.mark.asyncio
    async def test_io_error_mid_read(self, local_storage, write_staged, monkeypatch):
        async with await local_storage.put_file("flaky") as writer:
            await write_staged(writer, b"0123456789")
            await writer.finish()

        async def failing_chunks(read, chunk_size):
            yield await read(4)
            raise OSError(5, "Input/output error")

        monkeypatch.setattr(local_module, "iter_chunks", failing_chunks)

        async with await local_storage.read_file("flaky") as reader:
            with pytest.raises(ReadFailedError) as exc_info:
                await reader.read()

        assert exc_info.value.key == "flaky"
        assert isinstance(exc_info.value.__cause__, OSError)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("key", ["../outside", "a/../../outside", ""])
    async def test_rejects_escaping_keys(self, local_storage, key):
        with pytest.raises(InvalidKeyError):
            await local_storage.put_file(key)

    @pytest.mark.asyncio
    async def test_closed_handle(self, local_conf):
        storage = make_export_storage(local_conf)
        writer = await storage.put_file("k")
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

    @pytest.mark.asyncio
    async def test_commit_failure_keeps_staging_file(self, local_storage, tmp_path):
        writer = await local_storage.put_file("blocked")
        try:
            # A directory at the final path makes the rename fail
            (tmp_path / "exports" / "blocked").mkdir()
            writer.local_path.write_bytes(b"data")

            with pytest.raises(CommitFailedError):
                await writer.finish()

            assert writer.local_path.exists()
        finally:
            writer.cleanup()

        assert not writer.local_path.exists()
