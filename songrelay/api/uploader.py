"""
Upload transport: a bounded-reuse pool of aiohttp sessions and a client for
the `sendAudio` method of a Telegram-compatible Bot API.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Dict, Optional, Protocol

import aiohttp

from songrelay.exceptions import StaleCacheError, UploadError
from songrelay.media.buffer import UploadPayload

log = logging.getLogger(__name__)

STALE_FILE_ID_MARKERS = (
    "invalid remote file identifier",
    "wrong file identifier",
)


@dataclass
class UploadMeta:
    """Display fields sent with an audio upload."""

    caption: str
    title: str
    performer: str
    duration: int = 0


class AudioUploader(Protocol):
    """Delivers audio to a destination and returns the remote file reference."""

    async def send_audio(
        self,
        destination: int | str,
        payload: UploadPayload,
        meta: UploadMeta,
        thumbnail: Optional[UploadPayload] = None,
    ) -> str: ...

    async def send_cached(
        self,
        destination: int | str,
        file_id: str,
        meta: UploadMeta,
        thumb_file_id: Optional[str] = None,
    ) -> str: ...


@dataclass
class _PoolEntry:
    session: aiohttp.ClientSession
    uses: int = 0
    active: int = 0
    retired: bool = False


class UploadClientPool:
    """
    Hands out one shared upload session, rebuilding it after a bounded number
    of requests.

    The lock only covers the decision to reuse or replace the entry. Uploads
    run outside it, so a retired session is closed by whichever lease
    finishes last.
    """

    def __init__(
        self,
        reuse_limit: int = 50,
        timeout_secs: float = 300,
        session_factory: Optional[Callable[[], aiohttp.ClientSession]] = None,
    ):
        self.reuse_limit = reuse_limit
        self.timeout_secs = timeout_secs
        self._session_factory = session_factory or self._create_session
        self._entry: Optional[_PoolEntry] = None
        self._lock = asyncio.Lock()
        self.sessions_created = 0

    def _create_session(self) -> aiohttp.ClientSession:
        # No keep-alive: long multipart uploads leave stale idle connections.
        connector = aiohttp.TCPConnector(force_close=True, enable_cleanup_closed=True)
        return aiohttp.ClientSession(
            connector=connector,
            timeout=aiohttp.ClientTimeout(total=self.timeout_secs),
            auto_decompress=False,
        )

    def _needs_rebuild(self, entry: Optional[_PoolEntry]) -> bool:
        return (
            entry is None or entry.session.closed or entry.uses >= self.reuse_limit
        )

    async def _acquire(self) -> _PoolEntry:
        to_close = None
        async with self._lock:
            entry = self._entry
            if self._needs_rebuild(entry):
                if entry is not None:
                    entry.retired = True
                    if entry.active == 0:
                        to_close = entry
                entry = _PoolEntry(session=self._session_factory())
                self._entry = entry
                self.sessions_created += 1
                log.debug(
                    f"Created upload session #{self.sessions_created} "
                    f"(reuse limit: {self.reuse_limit})"
                )
            entry.uses += 1
            entry.active += 1

        if to_close is not None and not to_close.session.closed:
            await to_close.session.close()
        return entry

    async def _release(self, entry: _PoolEntry) -> None:
        entry.active -= 1
        if entry.retired and entry.active == 0 and not entry.session.closed:
            await entry.session.close()
            log.debug("Closed retired upload session")

    @asynccontextmanager
    async def lease(self) -> AsyncIterator[aiohttp.ClientSession]:
        """Borrows the current session for one request."""
        entry = await self._acquire()
        try:
            yield entry.session
        finally:
            await self._release(entry)

    async def close(self) -> None:
        async with self._lock:
            entry, self._entry = self._entry, None
        if entry is not None:
            entry.retired = True
            if entry.active == 0 and not entry.session.closed:
                await entry.session.close()


class BotApiUploader:
    """Sends audio through the Bot API `sendAudio` method."""

    def __init__(self, pool: UploadClientPool, bot_token: str, api_base: str):
        self.pool = pool
        self.bot_token = bot_token
        self.api_base = api_base.rstrip("/")

    @classmethod
    def from_config(cls, config) -> "BotApiUploader":
        pool = UploadClientPool(
            reuse_limit=config.upload_client_reuse_requests,
            timeout_secs=config.upload_timeout_secs,
        )
        return cls(pool, config.bot_token, config.bot_api)

    def _endpoint(self, method: str) -> str:
        return f"{self.api_base}/bot{self.bot_token}/{method}"

    @staticmethod
    def _base_form(destination: int | str, meta: UploadMeta) -> aiohttp.FormData:
        form = aiohttp.FormData()
        form.add_field("chat_id", str(destination))
        form.add_field("caption", meta.caption)
        form.add_field("title", meta.title)
        form.add_field("performer", meta.performer)
        if meta.duration > 0:
            form.add_field("duration", str(meta.duration))
        return form

    async def _post(self, method: str, form: aiohttp.FormData) -> Dict[str, Any]:
        async with self.pool.lease() as session:
            try:
                async with session.post(self._endpoint(method), data=form) as r:
                    body = await r.json(content_type=None)
            except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
                raise UploadError(f"{method} request failed: {e}", stage="uploading") from e

        if not isinstance(body, dict):
            raise UploadError(f"{method} returned an unexpected body", stage="uploading")
        if not body.get("ok"):
            description = str(body.get("description", "unknown error"))
            if any(marker in description.lower() for marker in STALE_FILE_ID_MARKERS):
                raise StaleCacheError(description)
            raise UploadError(f"{method} rejected: {description}", stage="uploading")
        return body.get("result") or {}

    @staticmethod
    def _extract_file_id(result: Dict[str, Any]) -> str:
        media = result.get("audio") or result.get("document") or {}
        file_id = media.get("file_id")
        if not file_id:
            raise UploadError("Upload response carried no file reference", stage="uploading")
        return file_id

    async def send_audio(
        self,
        destination: int | str,
        payload: UploadPayload,
        meta: UploadMeta,
        thumbnail: Optional[UploadPayload] = None,
    ) -> str:
        form = self._base_form(destination, meta)
        opened = []
        try:
            form.add_field(
                "audio",
                await self._open_payload(payload, opened),
                filename=payload.filename,
                content_type="application/octet-stream",
            )
            if thumbnail is not None:
                form.add_field(
                    "thumbnail",
                    await self._open_payload(thumbnail, opened),
                    filename=thumbnail.filename,
                    content_type="image/jpeg",
                )
            result = await self._post("sendAudio", form)
        finally:
            for handle in opened:
                handle.close()
        return self._extract_file_id(result)

    async def send_cached(
        self,
        destination: int | str,
        file_id: str,
        meta: UploadMeta,
        thumb_file_id: Optional[str] = None,
    ) -> str:
        form = self._base_form(destination, meta)
        form.add_field("audio", file_id)
        if thumb_file_id:
            form.add_field("thumbnail", thumb_file_id)
        result = await self._post("sendAudio", form)
        return self._extract_file_id(result)

    @staticmethod
    async def _open_payload(payload: UploadPayload, opened: list):
        """Returns a form body for the payload: its bytes, or an open file."""
        if payload.is_memory:
            return payload.data
        try:
            handle = await asyncio.to_thread(open, payload.path, "rb")
        except OSError as e:
            raise UploadError(
                f"Cannot open staged file '{payload.filename}': {e}", stage="uploading"
            ) from e
        opened.append(handle)
        return handle
