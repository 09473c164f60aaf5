"""
Counters for transfer concurrency and periodic maintenance.
"""

from dataclasses import dataclass, field


def update_peak(current_peak: int, value: int) -> int:
    """Returns the running maximum of a peak counter."""
    return value if value > current_peak else current_peak


@dataclass
class TransferStats:
    """
    Tracks in-flight and peak counts for downloads and uploads.

    All mutations happen on the event loop thread between awaits, so each
    enter/exit pair is atomic with respect to other transfers.
    """

    downloads_in_flight: int = 0
    downloads_peak: int = 0
    uploads_in_flight: int = 0
    uploads_peak: int = 0
    transfers_completed: int = 0
    transfers_failed: int = 0
    cache_hits: int = 0
    stale_cache_purges: int = 0
    bytes_downloaded: int = 0

    def enter_download(self) -> int:
        self.downloads_in_flight += 1
        self.downloads_peak = update_peak(self.downloads_peak, self.downloads_in_flight)
        return self.downloads_in_flight

    def exit_download(self) -> int:
        self.downloads_in_flight -= 1
        return self.downloads_in_flight

    def enter_upload(self) -> tuple[int, int]:
        """Registers an upload start. Returns (in_flight, peak)."""
        self.uploads_in_flight += 1
        self.uploads_peak = update_peak(self.uploads_peak, self.uploads_in_flight)
        return self.uploads_in_flight, self.uploads_peak

    def exit_upload(self) -> int:
        self.uploads_in_flight -= 1
        return self.uploads_in_flight


@dataclass
class MaintenanceCounters:
    """Request counters that trigger periodic maintenance jobs."""

    _counts: dict[str, int] = field(default_factory=dict, repr=False)

    def should_run(self, name: str, interval: int) -> bool:
        """
        Increments the named counter and reports whether the job is due.

        An interval of 0 disables the job.
        """
        if interval <= 0:
            return False
        count = self._counts.get(name, 0) + 1
        self._counts[name] = count
        return count % interval == 0
