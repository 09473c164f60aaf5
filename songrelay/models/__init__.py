"""
Data Models Layer.

This package contains the Pydantic configuration model and the dataclasses
that describe songs, tag payloads, and transfer statistics.
"""

from .config import CoverMode, CoverPolicy, RelayConfig, StorageMode
from .song import SongDetail, SongUrl, TagPayload
from .stats import MaintenanceCounters, TransferStats

__all__ = [
    "CoverMode",
    "CoverPolicy",
    "MaintenanceCounters",
    "RelayConfig",
    "SongDetail",
    "SongUrl",
    "StorageMode",
    "TagPayload",
    "TransferStats",
]
