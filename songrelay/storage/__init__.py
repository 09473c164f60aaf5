"""
Storage Layer.

This package handles data persistence: the configuration file and the
database of previously uploaded songs.
"""

from .config_manager import ConfigManager
from .song_cache import SongCache, SongRecord

__all__ = ["ConfigManager", "SongCache", "SongRecord"]
