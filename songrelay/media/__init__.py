"""
Media Processing Layer.

This package is responsible for all media operations: choosing where a
download is staged, staging it, downloading it, and embedding metadata tags.
"""

from .buffer import AudioBuffer, ThumbnailBuffer, UploadPayload
from .downloader import Downloader
from .memory import MemoryProbe
from .storage_selector import StorageDecision
from .tagger import Tagger

__all__ = [
    "AudioBuffer",
    "Downloader",
    "MemoryProbe",
    "StorageDecision",
    "Tagger",
    "ThumbnailBuffer",
    "UploadPayload",
]
