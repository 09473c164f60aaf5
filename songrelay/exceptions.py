"""
Defines custom exceptions for the application to allow for more specific error handling.
"""


class SongRelayError(Exception):
    """Base exception for all application-specific errors."""


class ConfigurationError(SongRelayError):
    """Raised for issues related to configuration loading or validation."""


class TransferError(SongRelayError):
    """
    Base for errors that terminate a single transfer.

    Carries the stage the transfer had reached and how many bytes had been
    received, so a failure can be diagnosed without retrying.
    """

    def __init__(
        self,
        message: str,
        stage: str | None = None,
        bytes_transferred: int = 0,
    ):
        super().__init__(message)
        self.stage = stage
        self.bytes_transferred = bytes_transferred

    def __str__(self) -> str:
        message = super().__str__()
        if self.stage:
            return f"{message} (stage: {self.stage}, bytes: {self.bytes_transferred})"
        return message


class StagingIOError(TransferError):
    """Raised when a staging file cannot be created, written, or read."""


class UpstreamError(TransferError):
    """Raised when the download host answers with an error or no content length."""


class EmptyFileError(TransferError):
    """Raised when a completed download contains no bytes."""


class UndersizedFileError(TransferError):
    """Raised when a completed download is smaller than the sanity threshold."""


class UploadError(TransferError):
    """Raised when the upload transport rejects a payload."""


class DownloadUnavailableError(TransferError):
    """Raised when no quality tier yields a usable download URL."""


class FormatError(SongRelayError):
    """Raised when an audio container is malformed while embedding tags."""


class StaleCacheError(SongRelayError):
    """Raised when a cached remote file reference is rejected by the upload target."""
