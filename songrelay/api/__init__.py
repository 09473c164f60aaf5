"""
External API Layer.

This package holds the catalog contract consumed by transfers and the
upload transport for the Bot API.
"""

from .catalog import CatalogClient, DirectLinkCatalog
from .uploader import AudioUploader, BotApiUploader, UploadClientPool, UploadMeta

__all__ = [
    "AudioUploader",
    "BotApiUploader",
    "CatalogClient",
    "DirectLinkCatalog",
    "UploadClientPool",
    "UploadMeta",
]
