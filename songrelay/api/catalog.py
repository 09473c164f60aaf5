"""
The catalog contract consumed by the transfer pipeline, plus a direct-link
adapter for transfers whose metadata is supplied by the caller.
"""

import logging
from typing import Protocol

from songrelay.models.song import SongDetail, SongUrl

log = logging.getLogger(__name__)

LOSSLESS_BITRATE = 999000
HIGH_BITRATE = 320000
STANDARD_BITRATE = 128000


def quality_tiers(has_entitlement: bool) -> tuple[int, ...]:
    """Bitrates to try, best first. The lossless tier needs an entitled account."""
    if has_entitlement:
        return (LOSSLESS_BITRATE, HIGH_BITRATE)
    return (HIGH_BITRATE, STANDARD_BITRATE)


class CatalogClient(Protocol):
    """Song metadata and download-link resolution."""

    async def fetch_song_metadata(self, song_id: int) -> SongDetail: ...

    async def resolve_download_url(self, song_id: int, bitrate: int) -> SongUrl: ...


class DirectLinkCatalog:
    """
    Serves a single song whose metadata and download link are already known.

    Every quality tier resolves to the same URL.
    """

    def __init__(self, song: SongDetail, url: str, bitrate: int = 0):
        self.song = song
        self.url = url
        self.bitrate = bitrate

    async def fetch_song_metadata(self, song_id: int) -> SongDetail:
        if song_id != self.song.id:
            raise LookupError(f"Song {song_id} is not known to this catalog.")
        return self.song

    async def resolve_download_url(self, song_id: int, bitrate: int) -> SongUrl:
        if song_id != self.song.id:
            return SongUrl(url="")
        log.debug(f"Resolved song {song_id} to direct link at tier {bitrate}")
        return SongUrl(url=self.url, bitrate=self.bitrate or bitrate)
