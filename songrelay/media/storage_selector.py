"""
Chooses whether a transfer is staged on disk or in memory.
"""

import logging
from enum import Enum

from songrelay.models.config import StorageMode

log = logging.getLogger(__name__)

MIB = 1024 * 1024
DEFAULT_CAPACITY = 10 * MIB
THUMBNAIL_MEMORY_LIMIT = 5 * MIB


class StorageDecision(str, Enum):
    DISK = "disk"
    MEMORY = "memory"


def decide(
    mode: StorageMode,
    content_length: int,
    available_mb: int,
    memory_threshold_mb: int,
    memory_buffer_mb: int,
    default_capacity: int = DEFAULT_CAPACITY,
) -> StorageDecision:
    """
    Picks the staging backend for one transfer.

    Pure apart from logging: the memory reading is sampled by the caller, so
    the same inputs always produce the same decision. A content length of 0
    means unknown and is sized as `default_capacity`.
    """
    if mode == StorageMode.DISK:
        return StorageDecision.DISK

    effective_size = content_length if content_length > 0 else default_capacity
    file_size_mb = effective_size // MIB

    if mode == StorageMode.HYBRID and file_size_mb > memory_threshold_mb:
        log.debug(
            f"Hybrid mode: file size {file_size_mb}MB exceeds threshold "
            f"{memory_threshold_mb}MB, using disk"
        )
        return StorageDecision.DISK

    required_mb = file_size_mb + memory_buffer_mb
    if available_mb >= required_mb:
        log.debug(
            f"{mode.value.capitalize()} mode: using memory (file={file_size_mb}MB, "
            f"available={available_mb}MB, buffer={memory_buffer_mb}MB)"
        )
        return StorageDecision.MEMORY

    if mode == StorageMode.MEMORY:
        log.warning(
            f"Memory mode requested but insufficient memory: available={available_mb}MB, "
            f"required={required_mb}MB. Falling back to disk."
        )
    else:
        log.debug(
            f"Hybrid mode: insufficient memory (available={available_mb}MB < "
            f"required={required_mb}MB), using disk"
        )
    return StorageDecision.DISK


def decide_thumbnail(mode: StorageMode, size: int) -> StorageDecision:
    """Thumbnails are small, so any non-disk mode keeps them in memory under 5 MiB."""
    if mode == StorageMode.DISK:
        return StorageDecision.DISK
    if size < THUMBNAIL_MEMORY_LIMIT:
        return StorageDecision.MEMORY
    return StorageDecision.DISK
