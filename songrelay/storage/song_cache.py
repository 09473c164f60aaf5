"""
Manages the SQLite database that remembers uploaded songs so repeat requests
can be answered with the remote file reference instead of a new transfer.
"""

import asyncio
import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

log = logging.getLogger(__name__)

MIN_VALID_SIZE = 1024


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SongRecord:
    """A cached upload of one song."""

    music_id: int
    song_name: str
    song_artists: str
    song_album: str
    file_ext: str
    music_size: int
    bit_rate: int = 0
    duration: int = 0
    file_id: str | None = None
    thumb_file_id: str | None = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    @property
    def is_valid(self) -> bool:
        """A record can be re-sent only with a file reference and a sane size."""
        return bool(self.file_id) and self.music_size > MIN_VALID_SIZE

    @property
    def effective_bitrate(self) -> int:
        """The stored bitrate, or one derived from size and duration."""
        if self.bit_rate > 0:
            return self.bit_rate
        return compute_bitrate(self.music_size, self.duration, 0)


def compute_bitrate(size_bytes: int, duration_seconds: int, fallback: int) -> int:
    """Average bits per second of a file, or `fallback` when the duration is unknown."""
    if duration_seconds > 0:
        return (8 * size_bytes) // duration_seconds
    return fallback


_COLUMNS = (
    "music_id",
    "song_name",
    "song_artists",
    "song_album",
    "file_ext",
    "music_size",
    "bit_rate",
    "duration",
    "file_id",
    "thumb_file_id",
    "created_at",
    "updated_at",
)


class SongCache:
    """
    A thread-safe SQLite store of uploaded songs, keyed by catalog song id.

    Every operation runs in a worker thread under a small connection semaphore.
    """

    def __init__(self, db_path: str | Path, pool_size: int = 5):
        self.db_path = Path(db_path)
        self._connection_semaphore = asyncio.Semaphore(pool_size)
        self._initialize_db()

    def _get_connection(self) -> sqlite3.Connection:
        """Gets a new database connection with optimized PRAGMA settings."""
        try:
            conn = sqlite3.connect(self.db_path, timeout=30, check_same_thread=False)
            conn.execute("PRAGMA journal_mode=WAL;")
            conn.execute("PRAGMA synchronous=NORMAL;")
            conn.execute("PRAGMA temp_store=MEMORY;")
            return conn
        except sqlite3.Error as e:
            log.error(f"Failed to connect to song cache database: {e}")
            raise

    def _initialize_db(self) -> None:
        if self.db_path.parent and not self.db_path.parent.exists():
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._get_connection() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS song_info (
                    music_id INTEGER PRIMARY KEY NOT NULL,
                    song_name TEXT NOT NULL,
                    song_artists TEXT NOT NULL,
                    song_album TEXT NOT NULL,
                    file_ext TEXT NOT NULL,
                    music_size INTEGER NOT NULL DEFAULT 0,
                    bit_rate INTEGER NOT NULL DEFAULT 0,
                    duration INTEGER NOT NULL DEFAULT 0,
                    file_id TEXT,
                    thumb_file_id TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );
                """
            )
            conn.commit()

    async def _run_in_executor(self, func, *args):
        """Runs a synchronous database function within the connection pool semaphore."""
        async with self._connection_semaphore:
            return await asyncio.to_thread(func, *args)

    @staticmethod
    def _row_to_record(row: tuple) -> SongRecord:
        values = dict(zip(_COLUMNS, row))
        values["created_at"] = datetime.fromisoformat(values["created_at"])
        values["updated_at"] = datetime.fromisoformat(values["updated_at"])
        return SongRecord(**values)

    def _lookup_sync(self, music_id: int) -> SongRecord | None:
        try:
            with self._get_connection() as conn:
                row = conn.execute(
                    f"SELECT {', '.join(_COLUMNS)} FROM song_info WHERE music_id = ?",  # noqa: S608
                    (music_id,),
                ).fetchone()
        except sqlite3.Error as e:
            log.error(f"Song cache lookup failed for {music_id}: {e}")
            return None
        return self._row_to_record(row) if row else None

    async def lookup(self, music_id: int) -> SongRecord | None:
        """Returns the cached record for a song, if any."""
        return await self._run_in_executor(self._lookup_sync, music_id)

    def _save_sync(self, record: SongRecord) -> bool:
        record.updated_at = _utcnow()
        values = [getattr(record, c) for c in _COLUMNS]
        values[_COLUMNS.index("created_at")] = record.created_at.isoformat()
        values[_COLUMNS.index("updated_at")] = record.updated_at.isoformat()
        updates = ", ".join(
            f"{c} = excluded.{c}" for c in _COLUMNS if c not in ("music_id", "created_at")
        )
        try:
            with self._get_connection() as conn:
                conn.execute(
                    f"INSERT INTO song_info ({', '.join(_COLUMNS)}) "  # noqa: S608
                    f"VALUES ({', '.join('?' * len(_COLUMNS))}) "
                    f"ON CONFLICT(music_id) DO UPDATE SET {updates}",
                    values,
                )
                conn.commit()
            return True
        except sqlite3.Error as e:
            log.error(f"Failed to save song {record.music_id} to cache: {e}")
            return False

    async def save(self, record: SongRecord) -> bool:
        """Inserts or updates a record. Returns False if the write failed."""
        return await self._run_in_executor(self._save_sync, record)

    def _delete_sync(self, music_id: int) -> bool:
        try:
            with self._get_connection() as conn:
                cur = conn.execute(
                    "DELETE FROM song_info WHERE music_id = ?", (music_id,)
                )
                conn.commit()
                return cur.rowcount > 0
        except sqlite3.Error as e:
            log.error(f"Failed to delete song {music_id} from cache: {e}")
            return False

    async def delete(self, music_id: int) -> bool:
        """Removes a record. Returns whether one existed."""
        return await self._run_in_executor(self._delete_sync, music_id)

    def _count_sync(self) -> int:
        with self._get_connection() as conn:
            return conn.execute("SELECT COUNT(*) FROM song_info").fetchone()[0]

    async def count(self) -> int:
        return await self._run_in_executor(self._count_sync)

    def _clear_all_sync(self) -> int:
        with self._get_connection() as conn:
            cur = conn.execute("DELETE FROM song_info")
            conn.commit()
            return cur.rowcount

    async def clear_all(self) -> int:
        """Deletes every record and returns how many were removed."""
        return await self._run_in_executor(self._clear_all_sync)

    def _analyze_sync(self) -> bool:
        try:
            with self._get_connection() as conn:
                conn.execute("ANALYZE;")
                conn.commit()
            log.debug("Song cache statistics refreshed.")
            return True
        except sqlite3.Error as e:
            log.warning(f"Database analyze failed: {e}")
            return False

    async def analyze(self) -> bool:
        """Refreshes the query planner statistics."""
        return await self._run_in_executor(self._analyze_sync)
