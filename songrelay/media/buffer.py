"""
Staging buffers that hold downloaded audio and artwork either on disk or in
memory, behind one uniform write/finish/size/cleanup contract.
"""

import asyncio
import logging
import os
from dataclasses import dataclass
from pathlib import Path

import aiofiles

from songrelay.exceptions import StagingIOError
from songrelay.media.storage_selector import (
    DEFAULT_CAPACITY,
    StorageDecision,
    decide_thumbnail,
)
from songrelay.models.config import StorageMode

log = logging.getLogger(__name__)


@dataclass
class UploadPayload:
    """
    A staged file handed to the upload transport.

    Exactly one of `path` (disk) or `data` (memory) is set.
    """

    filename: str
    path: Path | None = None
    data: bytearray | bytes | None = None

    @property
    def is_memory(self) -> bool:
        return self.data is not None

    def __len__(self) -> int:
        if self.data is not None:
            return len(self.data)
        return self.path.stat().st_size if self.path else 0


async def _remove_file(path: Path) -> None:
    try:
        await asyncio.to_thread(path.unlink, missing_ok=True)
    except OSError as e:
        log.warning(f"Failed to remove staged file '{path.name}': {e}")


class AudioBuffer:
    """
    Accumulates a downloaded audio file in exactly one of two backends.

    The variant is fixed at construction by a `StorageDecision`:

    - DISK: `path` is the staged file and `_handle` the open writer until
      `finish()` closes it. `cleanup()` deletes the file.
    - MEMORY: `_data` is a bytearray owned exclusively by this buffer.

    Use it as an async context manager so `cleanup()` runs on every exit path,
    including cancellation.
    """

    def __init__(
        self,
        decision: StorageDecision,
        filename: str,
        path: Path | None = None,
        handle=None,
        capacity: int = 0,
    ):
        self.decision = decision
        self.filename = filename
        self.path = path
        self.capacity = capacity
        self._handle = handle
        self._data: bytearray | None = (
            bytearray() if decision == StorageDecision.MEMORY else None
        )
        self._consumed = False

    @classmethod
    async def create(
        cls,
        decision: StorageDecision,
        filename: str,
        destination_dir: str | Path,
        content_length: int = 0,
        default_capacity: int = DEFAULT_CAPACITY,
    ) -> "AudioBuffer":
        """Allocates a buffer for the chosen backend."""
        if decision == StorageDecision.MEMORY:
            capacity = content_length if content_length > 0 else default_capacity
            log.debug(f"AudioBuffer: using memory mode (capacity: {capacity} bytes)")
            return cls(decision, filename, capacity=capacity)

        file_path = Path(destination_dir) / filename
        log.debug(f"AudioBuffer: using disk mode (path: {file_path})")
        try:
            handle = await aiofiles.open(file_path, "wb")
        except OSError as e:
            raise StagingIOError(f"Failed to create file '{file_path}': {e}") from e
        except BaseException:
            await _remove_file(file_path)
            raise
        return cls(decision, filename, path=file_path, handle=handle)

    @property
    def is_memory(self) -> bool:
        return self.decision == StorageDecision.MEMORY

    @property
    def data(self) -> bytearray:
        """The in-memory bytes. Only valid for memory-backed buffers."""
        if self._data is None:
            raise AttributeError("Disk-backed buffers have no in-memory data.")
        return self._data

    def replace_data(self, new_data: bytearray) -> None:
        """Swaps in a rebuilt byte buffer after an in-memory tag rewrite."""
        if not self.is_memory:
            raise AttributeError("Disk-backed buffers cannot replace their data.")
        self._data = new_data

    async def write_chunk(self, chunk: bytes) -> None:
        if self._consumed:
            raise RuntimeError("Cannot write to a consumed AudioBuffer.")
        if self.is_memory:
            self._data.extend(chunk)
            return
        if self._handle is None:
            raise StagingIOError(f"File '{self.filename}' is not open for writing.")
        try:
            await self._handle.write(chunk)
        except OSError as e:
            raise StagingIOError(f"Failed to write chunk to disk: {e}") from e

    async def finish(self) -> None:
        """Flushes pending bytes; afterwards `size()` is authoritative."""
        if self.is_memory or self._handle is None:
            return
        try:
            await self._handle.flush()
            await self._handle.close()
        except OSError as e:
            raise StagingIOError(f"Failed to flush file '{self.filename}': {e}") from e
        finally:
            self._handle = None

    async def size(self) -> int:
        if self.is_memory:
            return len(self._data) if self._data is not None else 0
        try:
            stat = await asyncio.to_thread(os.stat, self.path)
        except OSError:
            return 0
        return stat.st_size

    async def read_bytes(self) -> bytes:
        """Returns a copy of the staged bytes."""
        if self.is_memory:
            return bytes(self._data)
        try:
            async with aiofiles.open(self.path, "rb") as f:
                return await f.read()
        except OSError as e:
            raise StagingIOError(f"Failed to read file '{self.path}': {e}") from e

    def into_upload_payload(self) -> UploadPayload:
        """
        Hands the staged bytes over to an upload payload.

        Memory buffers give up their bytearray without copying; disk buffers
        hand over the path, which stays on disk until `cleanup()`.
        """
        if self._consumed:
            raise RuntimeError("AudioBuffer has already been converted to a payload.")
        self._consumed = True
        if self.is_memory:
            data, self._data = self._data, None
            return UploadPayload(self.filename, data=data)
        return UploadPayload(self.filename, path=self.path)

    async def cleanup(self) -> None:
        """Releases the backend. Safe to call repeatedly and after consumption."""
        if self.is_memory:
            self._data = None
            return
        if self._handle is not None:
            handle, self._handle = self._handle, None
            try:
                await handle.close()
            except OSError as e:
                log.debug(f"Closing '{self.filename}' failed: {e}")
        if self.path is not None:
            await _remove_file(self.path)

    async def __aenter__(self) -> "AudioBuffer":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool:
        await self.cleanup()
        return False


class ThumbnailBuffer:
    """Holds an already-fetched thumbnail image on disk or in memory."""

    FILENAME = "thumb.jpg"

    def __init__(
        self,
        decision: StorageDecision,
        path: Path | None = None,
        data: bytes | None = None,
    ):
        self.decision = decision
        self.path = path
        self._data = data

    @classmethod
    async def create(
        cls,
        mode: StorageMode,
        data: bytes,
        destination_dir: str | Path,
        filename: str,
    ) -> "ThumbnailBuffer":
        decision = decide_thumbnail(mode, len(data))
        if decision == StorageDecision.MEMORY:
            return cls(decision, data=data)

        path = Path(destination_dir) / filename
        try:
            async with aiofiles.open(path, "wb") as f:
                await f.write(data)
        except OSError as e:
            await _remove_file(path)
            raise StagingIOError(f"Failed to write thumbnail '{path}': {e}") from e
        except BaseException:
            await _remove_file(path)
            raise
        return cls(decision, path=path)

    @property
    def is_memory(self) -> bool:
        return self.decision == StorageDecision.MEMORY

    async def read_bytes(self) -> bytes:
        if self.is_memory:
            return self._data or b""
        try:
            async with aiofiles.open(self.path, "rb") as f:
                return await f.read()
        except OSError as e:
            raise StagingIOError(f"Failed to read thumbnail '{self.path}': {e}") from e

    def into_upload_payload(self) -> UploadPayload:
        if self.is_memory:
            data, self._data = self._data, None
            return UploadPayload(self.FILENAME, data=data or b"")
        return UploadPayload(self.FILENAME, path=self.path)

    async def cleanup(self) -> None:
        if self.is_memory:
            self._data = None
            return
        if self.path is not None:
            await _remove_file(self.path)
