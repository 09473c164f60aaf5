"""Tests for the SQLite song cache"""

import asyncio

import pytest

from songrelay.storage.song_cache import SongCache, SongRecord, compute_bitrate


def make_record(music_id=1, file_id="file-1", size=5_000_000, **kwargs) -> SongRecord:
    values = dict(
        music_id=music_id,
        song_name="Test Song",
        song_artists="Artist A/Artist B",
        song_album="Test Album",
        file_ext="flac",
        music_size=size,
        bit_rate=0,
        duration=200,
        file_id=file_id,
    )
    values.update(kwargs)
    return SongRecord(**values)


class TestSongRecord:
    @pytest.mark.parametrize(
        "file_id, size, valid",
        [("abc", 2048, True), ("abc", 1024, False), (None, 2048, False), ("", 2048, False)],
    )
    def test_validity(self, file_id, size, valid):
        assert make_record(file_id=file_id, size=size).is_valid is valid

    def test_effective_bitrate_prefers_stored_value(self):
        assert make_record(bit_rate=999000).effective_bitrate == 999000
        assert make_record(size=5_000_000, duration=200).effective_bitrate == 200000
        assert make_record(duration=0).effective_bitrate == 0

    def test_compute_bitrate(self):
        assert compute_bitrate(8_000_000, 200, 320000) == 320000
        assert compute_bitrate(1_000_000, 0, 128000) == 128000


def test_save_lookup_update_delete(song_cache):
    async def run():
        assert await song_cache.lookup(1) is None
        assert await song_cache.save(make_record())
        first = await song_cache.lookup(1)

        assert await song_cache.save(make_record(file_id="file-2", thumb_file_id="thumb-2"))
        second = await song_cache.lookup(1)
        count = await song_cache.count()

        assert await song_cache.delete(1)
        assert not await song_cache.delete(1)
        return first, second, count, await song_cache.lookup(1)

    first, second, count, gone = asyncio.run(run())

    assert first.file_id == "file-1"
    assert first.song_artists == "Artist A/Artist B"
    assert first.music_size == 5_000_000
    assert second.file_id == "file-2"
    assert second.thumb_file_id == "thumb-2"
    assert second.created_at == first.created_at
    assert second.updated_at >= first.updated_at
    assert count == 1
    assert gone is None


def test_clear_all_and_analyze(song_cache):
    async def run():
        for music_id in range(1, 4):
            await song_cache.save(make_record(music_id=music_id))
        removed = await song_cache.clear_all()
        return removed, await song_cache.count(), await song_cache.analyze()

    assert asyncio.run(run()) == (3, 0, True)


def test_database_directory_is_created(tmp_path):
    cache = SongCache(tmp_path / "deep" / "dir" / "songs.db")
    assert cache.db_path.exists()
    assert asyncio.run(cache.count()) == 0


def test_concurrent_saves(song_cache):
    async def run():
        await asyncio.gather(*(song_cache.save(make_record(music_id=i)) for i in range(20)))
        return await song_cache.count()

    assert asyncio.run(run()) == 20
