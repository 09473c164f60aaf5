"""
Handles the low-level downloading of audio and artwork over HTTP through a
shared connection pool, and the coalescing of network chunks into staging
buffers.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator
from urllib.parse import urlsplit

import aiohttp

from songrelay.exceptions import UpstreamError
from songrelay.media.buffer import AudioBuffer

log = logging.getLogger(__name__)

_connection_pool: aiohttp.ClientSession | None = None
_pool_lock = asyncio.Lock()

DEFAULT_FILE_EXT = "mp3"


async def get_connection_pool(
    max_idle_per_host: int = 2,
    connect_timeout: float = 10,
    total_timeout: float = 60,
) -> aiohttp.ClientSession:
    """
    Gets or creates the shared aiohttp ClientSession for downloads.

    Only one download pool exists for the lifetime of the application run;
    uploads use their own sessions (see `songrelay.api.uploader`).
    """
    global _connection_pool
    async with _pool_lock:
        if _connection_pool and not _connection_pool.closed:
            return _connection_pool

        connector = aiohttp.TCPConnector(
            limit_per_host=max_idle_per_host,
            ttl_dns_cache=600,  # 10 minutes
            keepalive_timeout=30,
            enable_cleanup_closed=True,
            force_close=False,
        )
        timeout = aiohttp.ClientTimeout(
            total=total_timeout, sock_connect=connect_timeout
        )
        _connection_pool = aiohttp.ClientSession(connector=connector, timeout=timeout)
        log.debug(f"Created download pool with limit_per_host={max_idle_per_host}")

    return _connection_pool


async def close_connection_pool() -> None:
    """Closes the shared global connection pool."""
    global _connection_pool
    async with _pool_lock:
        if _connection_pool and not _connection_pool.closed:
            await _connection_pool.close()
            _connection_pool = None
            log.debug("Shared downloader connection pool closed.")


def detect_file_ext(url: str) -> str:
    """Takes the extension from the URL path, defaulting to mp3."""
    path = urlsplit(url).path
    name = path.rsplit("/", 1)[-1]
    if "." not in name:
        return DEFAULT_FILE_EXT
    ext = name.rsplit(".", 1)[-1].lower()
    return ext or DEFAULT_FILE_EXT


def thumbnail_url(pic_url: str, size: int) -> str:
    """Appends the image-resize query that asks the CDN for a size x size thumbnail."""
    separator = "&" if "?" in pic_url else "?"
    return f"{pic_url}{separator}param={size}y{size}"


class DownloadResponse:
    """Thin view over an HTTP response, exposing only what staging needs."""

    def __init__(self, response: aiohttp.ClientResponse):
        self._response = response

    @property
    def status(self) -> int:
        return self._response.status

    @property
    def ok(self) -> bool:
        return 200 <= self._response.status < 300

    @property
    def content_length(self) -> int:
        """The declared body size, or 0 when the server did not send one."""
        return self._response.content_length or 0

    def iter_chunks(self) -> AsyncIterator[bytes]:
        """Yields body bytes as they arrive from the network."""
        return self._response.content.iter_any()

    async def read(self) -> bytes:
        return await self._response.read()


async def stream_to_buffer(
    chunks: AsyncIterator[bytes], buffer: AudioBuffer, chunk_size: int
) -> int:
    """
    Copies a chunk stream into a staging buffer, coalescing small network
    chunks so the buffer sees writes of roughly `chunk_size` bytes.

    Chunks already at least `chunk_size` long are written straight through.
    Returns the number of bytes received. The caller calls `buffer.finish()`.
    """
    scratch = bytearray()
    received = 0

    async for chunk in chunks:
        received += len(chunk)
        if len(chunk) >= chunk_size:
            if scratch:
                await buffer.write_chunk(bytes(scratch))
                scratch.clear()
            await buffer.write_chunk(chunk)
            continue
        if len(scratch) + len(chunk) > chunk_size:
            await buffer.write_chunk(bytes(scratch))
            scratch.clear()
        scratch.extend(chunk)

    if scratch:
        await buffer.write_chunk(bytes(scratch))
    return received


class Downloader:
    """A low-level downloader with retry logic for establishing requests."""

    def __init__(
        self,
        timeout: float = 60,
        connect_timeout: float = 10,
        max_idle_per_host: int = 2,
        max_attempts: int = 3,
        base_delay: float = 1.5,
    ):
        self.timeout = timeout
        self.connect_timeout = connect_timeout
        self.max_idle_per_host = max_idle_per_host
        self.max_attempts = max_attempts
        self.base_delay = base_delay

    @classmethod
    def from_config(cls, config) -> "Downloader":
        return cls(
            timeout=config.download_timeout,
            connect_timeout=config.download_connect_timeout_secs,
            max_idle_per_host=config.download_pool_max_idle_per_host,
        )

    async def _open(self, url: str) -> aiohttp.ClientResponse:
        """Sends the GET request, retrying connection failures with backoff."""
        last_exception = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                session = await get_connection_pool(
                    self.max_idle_per_host, self.connect_timeout, self.timeout
                )
                return await session.get(url, allow_redirects=True)
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                last_exception = e
                log.debug(
                    f"Request attempt {attempt}/{self.max_attempts} for '{url}' "
                    f"failed: {e}. Retrying..."
                )
                if attempt < self.max_attempts:
                    await asyncio.sleep(self.base_delay * (2 ** (attempt - 1)))

        raise UpstreamError(
            f"Request to '{url}' failed after {self.max_attempts} attempts: "
            f"{last_exception}",
            stage="downloading",
        ) from last_exception

    @asynccontextmanager
    async def fetch_bytes(self, url: str) -> AsyncIterator[DownloadResponse]:
        """Opens a streaming GET and releases the connection on exit."""
        response = await self._open(url)
        try:
            yield DownloadResponse(response)
        finally:
            response.release()

    async def fetch_artwork(self, url: str) -> bytes:
        """Downloads a whole image into memory."""
        async with self.fetch_bytes(url) as response:
            if not response.ok:
                raise UpstreamError(
                    f"Artwork request returned HTTP {response.status}",
                    stage="downloading",
                )
            try:
                return await response.read()
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                raise UpstreamError(
                    f"Failed to read artwork body: {e}", stage="downloading"
                ) from e
