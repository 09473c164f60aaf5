"""
Pydantic model for application configuration.
Provides robust validation for all settings.
"""

from dataclasses import dataclass
from enum import Enum

from pydantic import BaseModel, field_validator


class StorageMode(str, Enum):
    """Where downloaded audio is staged before tagging and upload."""

    DISK = "disk"
    MEMORY = "memory"
    HYBRID = "hybrid"


class CoverMode(str, Enum):
    """Which cover art variants are fetched for a transfer."""

    THUMBNAIL = "thumbnail"
    ORIGINAL = "original"
    BOTH = "both"


@dataclass(frozen=True)
class CoverPolicy:
    download_original: bool
    download_thumbnail: bool
    embed_tags: bool
    embed_cover: bool


def resolve_cover_policy(cover_mode: CoverMode) -> CoverPolicy:
    """Translates a cover mode into the individual download and embed toggles."""
    download_original = cover_mode in (CoverMode.ORIGINAL, CoverMode.BOTH)
    download_thumbnail = cover_mode in (CoverMode.THUMBNAIL, CoverMode.BOTH)
    return CoverPolicy(
        download_original=download_original,
        download_thumbnail=download_thumbnail,
        embed_tags=True,
        embed_cover=download_original,
    )


class RelayConfig(BaseModel):
    """A validated configuration model for the application."""

    # Upload target
    bot_token: str = ""
    bot_api: str = "https://api.telegram.org"
    bot_username: str = ""

    # Catalog entitlement (enables the lossless tier)
    music_u: str | None = None

    # Persistence
    database: str = "cache.db"
    cache_dir: str = "./cache"
    log_level: str = "info"

    # Download transport
    download_timeout: int = 60
    download_pool_max_idle_per_host: int = 2
    download_connect_timeout_secs: int = 10
    download_chunk_size_kb: int = 256
    max_concurrent_downloads: int = 3

    # Smart storage
    storage_mode: StorageMode = StorageMode.DISK
    memory_threshold_mb: int = 100
    memory_buffer_mb: int = 100
    default_capacity_mb: int = 10
    min_file_size_bytes: int = 1024

    # Artwork
    cover_mode: CoverMode = CoverMode.THUMBNAIL
    thumbnail_size: int = 320

    # Upload transport
    upload_client_reuse_requests: int = 50
    upload_timeout_secs: int = 300

    # Maintenance
    memory_release_interval_requests: int = 10
    db_analyze_interval_requests: int = 20

    class Config:
        """Pydantic model configuration."""

        validate_assignment = True
        str_strip_whitespace = True

    @field_validator("storage_mode", mode="before")
    @classmethod
    def parse_storage_mode(cls, v):
        """Accepts storage modes case-insensitively."""
        return v.lower() if isinstance(v, str) else v

    @field_validator("cover_mode", mode="before")
    @classmethod
    def parse_cover_mode(cls, v):
        """Accepts cover modes case-insensitively."""
        return v.lower() if isinstance(v, str) else v

    @field_validator("max_concurrent_downloads")
    @classmethod
    def validate_concurrency(cls, v: int) -> int:
        """Ensures a reasonable number of concurrent downloads."""
        if v < 1 or v > 32:
            raise ValueError("max_concurrent_downloads must be between 1 and 32.")
        return v

    @field_validator("download_chunk_size_kb")
    @classmethod
    def validate_chunk_size(cls, v: int) -> int:
        if v < 4:
            raise ValueError("download_chunk_size_kb must be at least 4.")
        return v

    @field_validator(
        "memory_threshold_mb",
        "memory_buffer_mb",
        "memory_release_interval_requests",
        "db_analyze_interval_requests",
        "min_file_size_bytes",
    )
    @classmethod
    def validate_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("Value cannot be negative.")
        return v

    @field_validator(
        "default_capacity_mb",
        "download_timeout",
        "download_connect_timeout_secs",
        "upload_client_reuse_requests",
        "upload_timeout_secs",
        "thumbnail_size",
    )
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Value must be at least 1.")
        return v

    @field_validator("bot_api")
    @classmethod
    def validate_bot_api(cls, v: str) -> str:
        """Normalizes the Bot API base URL to a form without the '/bot' suffix."""
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"bot_api must be an http(s) URL, got: {v}")
        v = v.rstrip("/")
        if v.endswith("/bot"):
            v = v[: -len("/bot")]
        return v

    @field_validator("music_u")
    @classmethod
    def validate_music_u(cls, v: str | None) -> str | None:
        """Treats a blank entitlement cookie as absent."""
        if v is not None and not v.strip():
            return None
        return v

    @property
    def has_entitlement(self) -> bool:
        return self.music_u is not None

    @property
    def chunk_size_bytes(self) -> int:
        return self.download_chunk_size_kb * 1024

    @property
    def default_capacity_bytes(self) -> int:
        return self.default_capacity_mb * 1024 * 1024

    @property
    def cover_policy(self) -> CoverPolicy:
        return resolve_cover_policy(self.cover_mode)
