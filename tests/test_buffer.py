"""Tests for the disk and memory staging buffers"""

import asyncio

import pytest

from songrelay.exceptions import StagingIOError
from songrelay.media.buffer import AudioBuffer, ThumbnailBuffer
from songrelay.media.storage_selector import (
    DEFAULT_CAPACITY,
    MIB,
    StorageDecision,
    decide,
)
from songrelay.models.config import StorageMode


async def _fill(buffer: AudioBuffer, chunks: list[bytes]) -> int:
    for chunk in chunks:
        await buffer.write_chunk(chunk)
    await buffer.finish()
    return await buffer.size()


class TestMemoryBuffer:
    def test_size_is_independent_of_chunking(self, staging_dir):
        payload = bytes(range(256)) * 40

        async def run(chunk_size):
            buffer = await AudioBuffer.create(StorageDecision.MEMORY, "a.mp3", staging_dir)
            chunks = [payload[i : i + chunk_size] for i in range(0, len(payload), chunk_size)]
            size = await _fill(buffer, chunks)
            return size, await buffer.read_bytes()

        for chunk_size in (1, 7, 1000, len(payload)):
            size, data = asyncio.run(run(chunk_size))
            assert size == len(payload)
            assert data == payload

    def test_capacity_comes_from_content_length_or_default(self, staging_dir):
        async def run():
            known = await AudioBuffer.create(
                StorageDecision.MEMORY, "a.mp3", staging_dir, content_length=5000
            )
            unknown = await AudioBuffer.create(StorageDecision.MEMORY, "b.mp3", staging_dir)
            return known.capacity, unknown.capacity

        assert asyncio.run(run()) == (5000, DEFAULT_CAPACITY)

    def test_payload_takes_ownership_without_copy(self, staging_dir):
        async def run():
            buffer = await AudioBuffer.create(StorageDecision.MEMORY, "a.mp3", staging_dir)
            await _fill(buffer, [b"abc", b"def"])
            original = buffer.data
            payload = buffer.into_upload_payload()
            assert payload.data is original
            assert payload.is_memory
            assert len(payload) == 6
            with pytest.raises(RuntimeError):
                buffer.into_upload_payload()
            with pytest.raises(RuntimeError):
                await buffer.write_chunk(b"x")
            await buffer.cleanup()
            await buffer.cleanup()

        asyncio.run(run())

    def test_nothing_is_written_to_disk(self, staging_dir):
        async def run():
            async with await AudioBuffer.create(
                StorageDecision.MEMORY, "a.mp3", staging_dir
            ) as buffer:
                await _fill(buffer, [b"x" * 100])

        asyncio.run(run())
        assert list(staging_dir.iterdir()) == []


class TestDiskBuffer:
    def test_write_and_size(self, staging_dir):
        async def run():
            buffer = await AudioBuffer.create(StorageDecision.DISK, "a.mp3", staging_dir)
            size = await _fill(buffer, [b"a" * 10, b"b" * 20])
            return buffer, size

        buffer, size = asyncio.run(run())
        assert size == 30
        assert (staging_dir / "a.mp3").read_bytes() == b"a" * 10 + b"b" * 20

    def test_payload_is_a_path_and_cleanup_removes_it(self, staging_dir):
        async def run():
            buffer = await AudioBuffer.create(StorageDecision.DISK, "a.mp3", staging_dir)
            await _fill(buffer, [b"data"])
            payload = buffer.into_upload_payload()
            assert not payload.is_memory
            assert payload.path == staging_dir / "a.mp3"
            assert payload.path.exists()
            await buffer.cleanup()
            assert not payload.path.exists()

        asyncio.run(run())

    def test_cleanup_tolerates_externally_deleted_file(self, staging_dir):
        async def run():
            buffer = await AudioBuffer.create(StorageDecision.DISK, "a.mp3", staging_dir)
            await _fill(buffer, [b"data"])
            (staging_dir / "a.mp3").unlink()
            assert await buffer.size() == 0
            await buffer.cleanup()
            await buffer.cleanup()

        asyncio.run(run())

    def test_cleanup_before_finish_closes_and_removes(self, staging_dir):
        async def run():
            buffer = await AudioBuffer.create(StorageDecision.DISK, "a.mp3", staging_dir)
            await buffer.write_chunk(b"partial")
            await buffer.cleanup()

        asyncio.run(run())
        assert not (staging_dir / "a.mp3").exists()

    def test_context_manager_cleans_up_on_error(self, staging_dir):
        async def run():
            async with await AudioBuffer.create(
                StorageDecision.DISK, "a.mp3", staging_dir
            ) as buffer:
                await buffer.write_chunk(b"data")
                raise ValueError("boom")

        with pytest.raises(ValueError):
            asyncio.run(run())
        assert not (staging_dir / "a.mp3").exists()

    def test_create_in_missing_directory_raises_staging_error(self, tmp_path):
        async def run():
            await AudioBuffer.create(StorageDecision.DISK, "a.mp3", tmp_path / "missing")

        with pytest.raises(StagingIOError):
            asyncio.run(run())


def test_unknown_length_hybrid_buffer_completes(staging_dir):
    """A 0 content length is sized by the default capacity and still stages fine."""
    decision = decide(StorageMode.HYBRID, 0, 4096, 100, 100)
    assert decision == StorageDecision.MEMORY

    async def run():
        buffer = await AudioBuffer.create(decision, "a.flac", staging_dir, content_length=0)
        async with buffer:
            size = await _fill(buffer, [b"z" * MIB, b"z" * 10])
            assert buffer.capacity == DEFAULT_CAPACITY
            return size

    assert asyncio.run(run()) == MIB + 10


class TestThumbnailBuffer:
    def test_memory_thumbnail(self, staging_dir, jpeg_bytes):
        async def run():
            thumb = await ThumbnailBuffer.create(
                StorageMode.HYBRID, jpeg_bytes, staging_dir, "t.jpg"
            )
            assert thumb.is_memory
            assert await thumb.read_bytes() == jpeg_bytes
            payload = thumb.into_upload_payload()
            assert payload.data == jpeg_bytes
            assert payload.filename == ThumbnailBuffer.FILENAME
            await thumb.cleanup()

        asyncio.run(run())
        assert list(staging_dir.iterdir()) == []

    def test_disk_thumbnail_is_removed_on_cleanup(self, staging_dir, jpeg_bytes):
        async def run():
            thumb = await ThumbnailBuffer.create(
                StorageMode.DISK, jpeg_bytes, staging_dir, "t.jpg"
            )
            assert not thumb.is_memory
            assert (staging_dir / "t.jpg").read_bytes() == jpeg_bytes
            await thumb.cleanup()
            await thumb.cleanup()

        asyncio.run(run())
        assert not (staging_dir / "t.jpg").exists()
