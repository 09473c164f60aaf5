"""Test configuration and fixtures"""

import asyncio
import io
import struct
from contextlib import asynccontextmanager
from pathlib import Path

import pytest
from mutagen.flac import FLAC
from PIL import Image

from songrelay.exceptions import StaleCacheError, UpstreamError
from songrelay.media.memory import MemoryProbe
from songrelay.models.config import RelayConfig
from songrelay.models.song import SongDetail, SongUrl
from songrelay.storage.song_cache import SongCache

MP3_FRAME = b"\xff\xfb\x90\x64"


# --- Synthetic media ---


def make_mp3(audio_size: int = 4096, id3_tag: bytes = b"") -> bytes:
    """Builds an MP3-looking byte stream, optionally behind an existing tag."""
    return id3_tag + MP3_FRAME + bytes(audio_size - len(MP3_FRAME))


def make_streaminfo() -> bytes:
    """A valid 34-byte STREAMINFO body: 44.1 kHz, stereo, 16 bit, 1 second."""
    packed = (44100 << 44) | (1 << 41) | (15 << 36) | 44100
    return (
        struct.pack(">HH", 4096, 4096)
        + (0).to_bytes(3, "big")
        + (0).to_bytes(3, "big")
        + packed.to_bytes(8, "big")
        + bytes(16)
    )


def make_flac(audio: bytes = b"\xff\xf8" + bytes(2046)) -> bytes:
    """A FLAC stream with only a STREAMINFO block, flagged as the last block."""
    streaminfo = make_streaminfo()
    header = bytes([0x80]) + len(streaminfo).to_bytes(3, "big")
    return b"fLaC" + header + streaminfo + audio


def add_flac_comments(data: bytes, comments: dict[str, str]) -> bytes:
    """Returns a copy of a FLAC stream with Vorbis comments added via mutagen."""
    bio = io.BytesIO(data)
    audio = FLAC(bio)
    audio.add_tags()
    for key, value in comments.items():
        audio[key] = [value]
    bio.seek(0)
    audio.save(bio)
    return bio.getvalue()


def make_jpeg(width: int = 8, height: int = 6) -> bytes:
    out = io.BytesIO()
    Image.new("RGB", (width, height), (200, 40, 40)).save(out, format="JPEG")
    return out.getvalue()


# --- Fakes ---


class FixedMemoryProbe(MemoryProbe):
    """A probe that always reports the same available memory."""

    def __init__(self, available_mb: int):
        super().__init__()
        self.fixed_mb = available_mb
        self.refreshes = 0

    def _query_available_mb(self) -> int:
        self.refreshes += 1
        return self.fixed_mb


class FakeResponse:
    def __init__(self, status: int, body: bytes, content_length: int | None = None, chunk: int = 1000):
        self.status = status
        self._body = body
        self._chunk = chunk
        self.content_length = len(body) if content_length is None else content_length

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    async def iter_chunks(self):
        for i in range(0, len(self._body), self._chunk):
            await asyncio.sleep(0)
            yield self._body[i : i + self._chunk]

    async def read(self) -> bytes:
        return self._body


class FakeDownloader:
    """Serves canned responses and records how many fetches overlap."""

    def __init__(self, delay: float = 0.0, artwork_delay: float = 0.0):
        self.files: dict[str, FakeResponse] = {}
        self.artwork: dict[str, bytes | Exception] = {}
        self.delay = delay
        self.artwork_delay = artwork_delay
        self.active = 0
        self.max_active = 0
        self.artwork_requests: list[str] = []

    def add_file(self, url: str, body: bytes, status: int = 200, content_length: int | None = None):
        self.files[url] = FakeResponse(status, body, content_length)

    @asynccontextmanager
    async def fetch_bytes(self, url: str):
        if url not in self.files:
            raise UpstreamError(f"no route for {url}", stage="downloading")
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            yield self.files[url]
        finally:
            self.active -= 1

    async def fetch_artwork(self, url: str) -> bytes:
        self.artwork_requests.append(url)
        if self.artwork_delay:
            await asyncio.sleep(self.artwork_delay)
        value = self.artwork.get(url)
        if value is None:
            raise UpstreamError(f"no artwork at {url}", stage="downloading")
        if isinstance(value, Exception):
            raise value
        return value


class FakeUploader:
    """Captures uploaded bytes and hands out sequential file ids."""

    def __init__(self, delay: float = 0.0):
        self.delay = delay
        self.sent: list[dict] = []
        self.cached_sends: list[str] = []
        self.stale_ids: set[str] = set()
        self.fail_with: Exception | None = None
        self.active = 0
        self.max_active = 0
        self._counter = 0

    async def send_audio(self, destination, payload, meta, thumbnail=None) -> str:
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.fail_with is not None:
                raise self.fail_with
            data = bytes(payload.data) if payload.is_memory else payload.path.read_bytes()
            thumb = None
            if thumbnail is not None:
                thumb = bytes(thumbnail.data) if thumbnail.is_memory else thumbnail.path.read_bytes()
            self.sent.append(
                {
                    "destination": destination,
                    "filename": payload.filename,
                    "memory": payload.is_memory,
                    "data": data,
                    "thumbnail": thumb,
                    "meta": meta,
                }
            )
            self._counter += 1
            return f"file-{self._counter}"
        finally:
            self.active -= 1

    async def send_cached(self, destination, file_id, meta, thumb_file_id=None) -> str:
        if file_id in self.stale_ids:
            raise StaleCacheError("Bad Request: wrong file identifier/HTTP URL specified")
        self.cached_sends.append(file_id)
        return file_id


class FakeCatalog:
    """Catalog with per-tier URL answers. A missing tier resolves to an empty URL."""

    def __init__(self):
        self.songs: dict[int, SongDetail] = {}
        self.urls: dict[tuple[int, int], SongUrl | Exception] = {}
        self.tier_requests: list[tuple[int, int]] = []

    def add_song(self, song: SongDetail, url: str, bitrate: int = 320000):
        self.songs[song.id] = song
        self.urls[(song.id, bitrate)] = SongUrl(url=url, bitrate=bitrate)

    async def fetch_song_metadata(self, song_id: int) -> SongDetail:
        return self.songs[song_id]

    async def resolve_download_url(self, song_id: int, bitrate: int) -> SongUrl:
        self.tier_requests.append((song_id, bitrate))
        answer = self.urls.get((song_id, bitrate), SongUrl(url=""))
        if isinstance(answer, Exception):
            raise answer
        return answer


# --- Fixtures ---


@pytest.fixture
def staging_dir(tmp_path) -> Path:
    path = tmp_path / "staging"
    path.mkdir()
    return path


@pytest.fixture
def relay_config(tmp_path, staging_dir) -> RelayConfig:
    return RelayConfig(
        bot_token="123:abc",
        bot_username="relaybot",
        cache_dir=str(staging_dir),
        database=str(tmp_path / "cache.db"),
    )


@pytest.fixture
def song_cache(tmp_path) -> SongCache:
    return SongCache(tmp_path / "songs.db")


@pytest.fixture
def sample_song() -> SongDetail:
    return SongDetail(
        id=1001,
        name="Test Song",
        artists=["Artist A", "Artist B"],
        album="Test Album",
        album_pic_url="https://img.example.com/cover.jpg",
        duration_ms=210000,
    )


@pytest.fixture
def fake_catalog() -> FakeCatalog:
    return FakeCatalog()


@pytest.fixture
def fake_downloader() -> FakeDownloader:
    return FakeDownloader()


@pytest.fixture
def fake_uploader() -> FakeUploader:
    return FakeUploader()


@pytest.fixture
def jpeg_bytes() -> bytes:
    return make_jpeg()
