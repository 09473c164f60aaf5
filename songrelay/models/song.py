"""
Dataclasses describing catalog songs, resolved download links, and the tag
payload written into audio files.
"""

from dataclasses import dataclass, field

from songrelay.utils.formatting import format_artists

UNKNOWN_ALBUM = "Unknown Album"


@dataclass
class SongDetail:
    """Metadata for a single song as returned by the catalog."""

    id: int
    name: str
    artists: list[str] = field(default_factory=list)
    album: str | None = None
    album_pic_url: str | None = None
    duration_ms: int | None = None

    @property
    def artist_display(self) -> str:
        return format_artists(self.artists)

    @property
    def album_display(self) -> str:
        return self.album or UNKNOWN_ALBUM

    @property
    def duration_seconds(self) -> int:
        return (self.duration_ms or 0) // 1000


@dataclass
class SongUrl:
    """A resolved download link. An empty URL means the tier is unavailable."""

    url: str
    bitrate: int = 0

    @property
    def available(self) -> bool:
        return bool(self.url)


@dataclass
class TagPayload:
    """The metadata embedded into an audio container."""

    title: str
    album: str
    artist: str
    duration_seconds: int = 0
    cover: bytes | None = None
    cover_mime: str = "image/jpeg"

    @classmethod
    def from_song(cls, song: SongDetail, cover: bytes | None = None) -> "TagPayload":
        return cls(
            title=song.name,
            album=song.album_display,
            artist=song.artist_display,
            duration_seconds=song.duration_seconds,
            cover=cover,
        )
