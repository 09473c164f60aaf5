"""
Reports available system memory and provides a best-effort hook for returning
freed memory to the operating system.
"""

import gc
import logging

import psutil

log = logging.getLogger(__name__)

MIB = 1024 * 1024


class MemoryProbe:
    """
    Reads the OS estimate of available memory in MiB.

    The last reading is kept as a snapshot; call `refresh()` right before a
    storage decision to sample the current value. A failed query never
    raises: the probe falls back to a conservative fixed estimate instead.
    """

    FALLBACK_MB = 512

    def __init__(self, fallback_mb: int = FALLBACK_MB):
        self.fallback_mb = fallback_mb
        self._available_mb: int | None = None

    def _query_available_mb(self) -> int:
        return psutil.virtual_memory().available // MIB

    def refresh(self) -> int:
        """Samples available memory and returns the new reading."""
        try:
            self._available_mb = int(self._query_available_mb())
        except (OSError, RuntimeError, psutil.Error) as e:
            log.warning(
                f"Failed to query available memory ({e}), "
                f"using conservative estimate of {self.fallback_mb}MB"
            )
            self._available_mb = self.fallback_mb
        return self._available_mb

    @property
    def available_mb(self) -> int:
        """The last sampled reading, sampling once if nothing was read yet."""
        if self._available_mb is None:
            return self.refresh()
        return self._available_mb


def release_memory() -> int:
    """
    Runs a full garbage collection after bursts of large buffers.

    Returns the number of unreachable objects found.
    """
    collected = gc.collect()
    try:
        rss_mb = psutil.Process().memory_info().rss // MIB
    except (OSError, psutil.Error):
        rss_mb = -1
    log.debug(f"Memory release: collected={collected}, rss={rss_mb}MB")
    return collected
