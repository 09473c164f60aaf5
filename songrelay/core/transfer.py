"""
Runs a single song transfer from cache check to upload.

A transfer resolves a download URL (falling back through quality tiers),
downloads the audio into a staging buffer while fetching cover art in
parallel, embeds tags, uploads the result, and records the remote file
reference so later requests can be served from the cache.
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

import aiohttp

from songrelay.api.catalog import CatalogClient, quality_tiers
from songrelay.api.uploader import AudioUploader, UploadMeta
from songrelay.exceptions import (
    DownloadUnavailableError,
    EmptyFileError,
    SongRelayError,
    StagingIOError,
    StaleCacheError,
    TransferError,
    UndersizedFileError,
    UploadError,
    UpstreamError,
)
from songrelay.media.buffer import AudioBuffer, ThumbnailBuffer
from songrelay.media.downloader import (
    Downloader,
    detect_file_ext,
    stream_to_buffer,
    thumbnail_url,
)
from songrelay.media.memory import MemoryProbe, release_memory
from songrelay.media.storage_selector import StorageDecision, decide
from songrelay.media.tagger import Tagger
from songrelay.models.config import RelayConfig
from songrelay.models.song import SongDetail, SongUrl, TagPayload
from songrelay.models.stats import MaintenanceCounters, TransferStats
from songrelay.storage.song_cache import SongCache, SongRecord, compute_bitrate
from songrelay.utils.formatting import build_caption, clean_filename, throughput_mbps

log = logging.getLogger(__name__)


class TransferState(str, Enum):
    QUEUED = "queued"
    DOWNLOADING = "downloading"
    TAGGING = "tagging"
    UPLOADING = "uploading"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class TransferResult:
    """The outcome of one `TransferOrchestrator.process` call."""

    song_id: int
    state: TransferState = TransferState.QUEUED
    file_id: str | None = None
    from_cache: bool = False
    storage: StorageDecision | None = None
    size: int = 0
    tagged: bool = False
    error: TransferError | None = None

    @property
    def ok(self) -> bool:
        return self.state == TransferState.COMPLETED


async def _nothing():
    return None


class TransferOrchestrator:
    """
    Coordinates transfers with a bounded number of concurrent downloads.

    One orchestrator is shared by every transfer of the process so the
    download slots, counters, and maintenance intervals are global.
    """

    def __init__(
        self,
        config: RelayConfig,
        catalog: CatalogClient,
        downloader: Downloader,
        uploader: AudioUploader,
        cache: SongCache,
        memory_probe: MemoryProbe | None = None,
        tagger: Tagger | None = None,
        stats: TransferStats | None = None,
    ):
        self.config = config
        self.catalog = catalog
        self.downloader = downloader
        self.uploader = uploader
        self.cache = cache
        self.memory_probe = memory_probe or MemoryProbe()
        self.tagger = tagger or Tagger(embed_art=config.cover_policy.embed_cover)
        self.stats = stats or TransferStats()
        self.maintenance = MaintenanceCounters()
        self._download_slots = asyncio.Semaphore(config.max_concurrent_downloads)
        self.staging_dir = Path(config.cache_dir)
        self.staging_dir.mkdir(parents=True, exist_ok=True)

    async def process(self, song_id: int, destination: int | str) -> TransferResult:
        """
        Delivers a song to the destination, from the cache when possible.

        Terminal failures are reported on the result rather than raised.
        """
        result = TransferResult(song_id=song_id)
        try:
            if not await self._send_from_cache(song_id, destination, result):
                await self._transfer(song_id, destination, result)
        except TransferError as e:
            if e.stage is None:
                e.stage = result.state.value
            result.error = e
            result.state = TransferState.FAILED
            self.stats.transfers_failed += 1
            log.error(f"[red]✗ Transfer of song {song_id} failed:[/red] {e}")
            return result

        result.state = TransferState.COMPLETED
        self.stats.transfers_completed += 1
        return result

    # --- Cache ---

    def _upload_meta(self, record: SongRecord) -> UploadMeta:
        caption = build_caption(
            record.song_name,
            record.song_artists,
            record.song_album,
            record.file_ext,
            record.music_size,
            record.effective_bitrate,
            self.config.bot_username,
        )
        return UploadMeta(
            caption=caption,
            title=record.song_name,
            performer=record.song_artists,
            duration=record.duration,
        )

    async def _send_from_cache(
        self, song_id: int, destination: int | str, result: TransferResult
    ) -> bool:
        """Re-sends a cached upload by reference. Returns False when a transfer is needed."""
        record = await self.cache.lookup(song_id)
        if record is None:
            return False

        if not record.is_valid:
            log.info(
                f"Removing invalid cached record for song {song_id}: "
                f"size {record.music_size} bytes"
            )
            await self.cache.delete(song_id)
            return False

        try:
            file_id = await self.uploader.send_cached(
                destination, record.file_id, self._upload_meta(record), record.thumb_file_id
            )
        except StaleCacheError as e:
            log.warning(
                f"Cached file reference for song {song_id} is invalid, "
                f"deleting record and transferring again: {e}"
            )
            await self.cache.delete(song_id)
            self.stats.stale_cache_purges += 1
            return False

        self.stats.cache_hits += 1
        result.file_id = file_id
        result.from_cache = True
        result.size = record.music_size
        log.info(f"Served song {song_id} from cache")
        return True

    # --- Resolution ---

    async def _fetch_metadata(self, song_id: int) -> SongDetail:
        try:
            return await self.catalog.fetch_song_metadata(song_id)
        except SongRelayError:
            raise
        except Exception as e:
            raise UpstreamError(
                f"Failed to fetch metadata for song {song_id}: {e}"
            ) from e

    async def _resolve_download_url(self, song_id: int) -> SongUrl:
        """Tries each quality tier in turn, best first."""
        tiers = quality_tiers(self.config.has_entitlement)
        for bitrate in tiers:
            try:
                song_url = await self.catalog.resolve_download_url(song_id, bitrate)
            except Exception as e:
                log.warning(
                    f"Resolving song {song_id} at {bitrate} bps failed: {e}, "
                    "trying next tier"
                )
                continue
            if song_url.available:
                log.debug(f"Resolved song {song_id} at {bitrate} bps")
                return song_url
            log.info(f"Song {song_id} unavailable at {bitrate} bps, trying next tier")

        raise DownloadUnavailableError(
            f"No download URL available for song {song_id} "
            f"(tried {', '.join(map(str, tiers))})"
        )

    # --- Transfer ---

    async def _transfer(
        self, song_id: int, destination: int | str, result: TransferResult
    ) -> None:
        song = await self._fetch_metadata(song_id)
        song_url = await self._resolve_download_url(song_id)
        file_ext = detect_file_ext(song_url.url)
        filename = (
            f"{clean_filename(song.artist_display)} - {clean_filename(song.name)}"
            f".{file_ext}"
        )

        async with self._download_slots:
            self.stats.enter_download()
            try:
                result.state = TransferState.DOWNLOADING
                await self._run_stages(song, song_url, file_ext, filename, destination, result)
            finally:
                self.stats.exit_download()

        await self._run_maintenance()

    async def _run_stages(
        self,
        song: SongDetail,
        song_url: SongUrl,
        file_ext: str,
        filename: str,
        destination: int | str,
        result: TransferResult,
    ) -> None:
        audio_task = asyncio.ensure_future(self._download_audio(song_url.url, filename))
        artwork_task = asyncio.ensure_future(self._download_artwork(song))
        try:
            audio_outcome, artwork_outcome = await asyncio.gather(
                audio_task, artwork_task, return_exceptions=True
            )
        except BaseException:
            await self._discard_stages(audio_task, artwork_task)
            raise

        if isinstance(artwork_outcome, BaseException):
            log.warning(f"Artwork download for song {song.id} failed: {artwork_outcome}")
            cover, thumb = None, None
        else:
            cover, thumb = artwork_outcome

        try:
            if isinstance(audio_outcome, BaseException):
                raise audio_outcome
            audio, downloaded = audio_outcome
            self.stats.bytes_downloaded += downloaded
            result.storage = audio.decision

            async with audio:
                await self._validate(audio, downloaded)
                await self._tag(audio, song, file_ext, cover, result)
                await self._upload(audio, thumb, song, song_url, file_ext, destination, result)
        finally:
            if thumb is not None:
                await thumb.cleanup()

    @staticmethod
    async def _discard_stages(audio_task: asyncio.Task, artwork_task: asyncio.Task) -> None:
        """Releases buffers from stages that finished before the transfer was aborted."""
        for task in (audio_task, artwork_task):
            task.cancel()
        await asyncio.gather(audio_task, artwork_task, return_exceptions=True)

        if not audio_task.cancelled() and audio_task.exception() is None:
            audio, _ = audio_task.result()
            await audio.cleanup()
        if not artwork_task.cancelled() and artwork_task.exception() is None:
            _, thumb = artwork_task.result()
            if thumb is not None:
                await thumb.cleanup()

    async def _download_audio(self, url: str, filename: str) -> tuple[AudioBuffer, int]:
        """Streams the audio into a freshly selected staging buffer."""
        cfg = self.config
        start = time.monotonic()
        async with self.downloader.fetch_bytes(url) as response:
            if not response.ok:
                raise UpstreamError(f"HTTP {response.status}", stage="downloading")
            content_length = response.content_length
            if content_length <= 0:
                raise UpstreamError(
                    "Empty file or unable to get file size", stage="downloading"
                )

            decision = decide(
                cfg.storage_mode,
                content_length,
                self.memory_probe.refresh(),
                cfg.memory_threshold_mb,
                cfg.memory_buffer_mb,
                cfg.default_capacity_bytes,
            )
            buffer = await AudioBuffer.create(
                decision,
                filename,
                self.staging_dir,
                content_length,
                cfg.default_capacity_bytes,
            )
            try:
                downloaded = await stream_to_buffer(
                    response.iter_chunks(), buffer, cfg.chunk_size_bytes
                )
                await buffer.finish()
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                received = await buffer.size()
                await buffer.cleanup()
                raise UpstreamError(
                    f"Download interrupted: {e}",
                    stage="downloading",
                    bytes_transferred=received,
                ) from e
            except BaseException:
                await buffer.cleanup()
                raise

        elapsed = time.monotonic() - start
        log.info(
            f"Audio download completed: {downloaded} bytes in {elapsed:.2f}s "
            f"({throughput_mbps(downloaded, elapsed):.2f} MB/s, mode: {decision.value})"
        )
        return buffer, downloaded

    async def _fetch_image(self, url: str, label: str, song_id: int) -> bytes | None:
        try:
            data = await self.downloader.fetch_artwork(url)
        except (SongRelayError, aiohttp.ClientError, asyncio.TimeoutError) as e:
            log.warning(f"Failed to download {label} for song {song_id}: {e}")
            return None
        log.info(f"Downloaded {label} for song {song_id} ({len(data)} bytes)")
        return data

    async def _download_artwork(
        self, song: SongDetail
    ) -> tuple[bytes | None, ThumbnailBuffer | None]:
        """Fetches the embeddable cover and the display thumbnail per the cover policy."""
        policy = self.config.cover_policy
        if not song.album_pic_url:
            log.warning(f"No album picture for song {song.id}")
            return None, None

        original, thumb_data = await asyncio.gather(
            self._fetch_image(song.album_pic_url, "original album art", song.id)
            if policy.download_original
            else _nothing(),
            self._fetch_image(
                thumbnail_url(song.album_pic_url, self.config.thumbnail_size),
                "thumbnail",
                song.id,
            )
            if policy.download_thumbnail
            else _nothing(),
        )

        thumb = None
        if thumb_data:
            try:
                thumb = await ThumbnailBuffer.create(
                    self.config.storage_mode,
                    thumb_data,
                    self.staging_dir,
                    f"thumb_{song.id}_{uuid.uuid4().hex[:8]}.jpg",
                )
            except StagingIOError as e:
                log.warning(f"Could not stage thumbnail for song {song.id}: {e}")

        log.info(
            f"Cover download result - Original: {self._cover_status(policy.download_original, original)}, "
            f"Thumbnail: {self._cover_status(policy.download_thumbnail, thumb)}"
        )
        return original, thumb

    @staticmethod
    def _cover_status(requested: bool, value) -> str:
        if not requested:
            return "Skipped"
        return "Available" if value else "None"

    async def _validate(self, audio: AudioBuffer, downloaded: int) -> None:
        size = await audio.size()
        if size == 0:
            raise EmptyFileError(
                "Downloaded file is empty",
                stage="downloading",
                bytes_transferred=downloaded,
            )
        if size < self.config.min_file_size_bytes:
            raise UndersizedFileError(
                f"Downloaded file is too small ({size} bytes)",
                stage="downloading",
                bytes_transferred=downloaded,
            )
        log.debug(f"File validation passed: {size} bytes")

    async def _tag(
        self,
        audio: AudioBuffer,
        song: SongDetail,
        file_ext: str,
        cover: bytes | None,
        result: TransferResult,
    ) -> None:
        result.state = TransferState.TAGGING
        embed = cover if self.config.cover_policy.embed_cover else None
        payload = TagPayload.from_song(song, embed)
        log.info(
            f"Processing tags for {file_ext} format "
            f"(cover: {'original' if embed else 'none'})"
        )
        result.tagged = await asyncio.to_thread(
            self.tagger.tag_buffer, audio, file_ext, payload
        )

    async def _upload(
        self,
        audio: AudioBuffer,
        thumb: ThumbnailBuffer | None,
        song: SongDetail,
        song_url: SongUrl,
        file_ext: str,
        destination: int | str,
        result: TransferResult,
    ) -> None:
        size = await audio.size()
        duration = song.duration_seconds
        bitrate = compute_bitrate(size, duration, song_url.bitrate)
        log.debug(
            f"Bitrate - catalog: {song_url.bitrate} bps, "
            f"from file: {bitrate} bps (duration: {duration}s)"
        )
        record = SongRecord(
            music_id=song.id,
            song_name=song.name,
            song_artists=song.artist_display,
            song_album=song.album_display,
            file_ext=file_ext,
            music_size=size,
            bit_rate=bitrate,
            duration=duration,
        )

        result.state = TransferState.UPLOADING
        meta = self._upload_meta(record)
        payload = audio.into_upload_payload()
        thumb_payload = thumb.into_upload_payload() if thumb is not None else None

        _, peak = self.stats.enter_upload()
        start = time.monotonic()
        try:
            try:
                file_id = await self.uploader.send_audio(
                    destination, payload, meta, thumb_payload
                )
            except StaleCacheError as e:
                # Only a cached re-send can be stale; on a fresh upload it is a rejection.
                raise UploadError(f"Upload rejected: {e}", stage="uploading") from e
        except BaseException as e:
            self._log_upload(size, start, peak, succeeded=False)
            if isinstance(e, TransferError):
                e.bytes_transferred = e.bytes_transferred or size
            raise
        self._log_upload(size, start, peak, succeeded=True)

        record.file_id = file_id
        await self.cache.save(record)
        result.file_id = file_id
        result.size = size

    def _log_upload(self, size: int, start: float, peak: int, succeeded: bool) -> None:
        elapsed = time.monotonic() - start
        in_flight = self.stats.exit_upload()
        message = (
            f"{elapsed:.2f}s ({throughput_mbps(size, elapsed):.2f} MB/s, "
            f"inflight: {in_flight}, peak: {peak})"
        )
        if succeeded:
            log.info(f"Upload completed in {message}")
        else:
            log.warning(f"Upload failed after {message}")

    async def _run_maintenance(self) -> None:
        cfg = self.config
        if self.maintenance.should_run("db_analyze", cfg.db_analyze_interval_requests):
            await self.cache.analyze()
        if self.maintenance.should_run(
            "memory_release", cfg.memory_release_interval_requests
        ):
            # Let finished tasks drop their buffers before collecting.
            await asyncio.sleep(0)
            release_memory()
