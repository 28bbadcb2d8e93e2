"""
Thread-safe SQLite database for playlist-mirror.

Every managed pair is persisted so it survives a restart, and a small
cache of playlist metadata avoids asking Spotify for track counts.

Schema:
    schedules:  Daily schedules (pair, trigger_time, active, last_run_at)
    polling:    Real-time pairs (pair, watermark, active)
    playlists:  Cached playlist metadata (spotify_id, name, track_count)

Both pair tables hold at most one row per (playlist_id, conversation_id).
Deleting a schedule or stopping polling is a soft delete (active = 0);
re-activating reuses the row, which is how a polling watermark survives a
stop/start cycle.

Usage:
    db = Database(Path("~/.playlist-mirror/mirror.db").expanduser())

    db.upsert_schedule(PairKey("37i9dQZF1DXcBWIGoYBM5M", "42"), "13:30")
    for record in db.get_active_schedules():
        print(record.pair, record.trigger_time)
"""

import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Generator

from playlist_mirror.core.exceptions import PersistenceError
from playlist_mirror.core.models import (
    PairKey,
    PlaylistSummary,
    PollingRecord,
    ScheduleRecord,
    from_iso,
    to_iso,
    utc_now,
)


DATABASE_VERSION = 1


_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

CREATE TABLE IF NOT EXISTS schedules (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    playlist_id TEXT NOT NULL,
    conversation_id TEXT NOT NULL,
    trigger_time TEXT NOT NULL,
    active INTEGER NOT NULL DEFAULT 1,
    last_run_at TEXT,
    created_at TEXT,
    updated_at TEXT,
    UNIQUE(playlist_id, conversation_id)
);

CREATE TABLE IF NOT EXISTS polling (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    playlist_id TEXT NOT NULL,
    conversation_id TEXT NOT NULL,
    watermark TEXT NOT NULL,
    active INTEGER NOT NULL DEFAULT 1,
    created_at TEXT,
    updated_at TEXT,
    UNIQUE(playlist_id, conversation_id)
);

CREATE TABLE IF NOT EXISTS playlists (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    spotify_id TEXT UNIQUE NOT NULL,
    name TEXT,
    track_count INTEGER NOT NULL DEFAULT 0,
    created_at TEXT,
    updated_at TEXT
);

CREATE INDEX IF NOT EXISTS idx_schedules_active ON schedules(active);
CREATE INDEX IF NOT EXISTS idx_polling_active ON polling(active);
"""


class Database:
    """
    Thread-safe SQLite store of pairs and playlist metadata.

    Uses a single persistent connection with thread locking for safety.
    All public methods acquire self._lock before executing, and wrap
    sqlite3 errors in PersistenceError.
    """

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        self._lock = threading.Lock()
        self._conn: sqlite3.Connection | None = None
        self._closed = False

        if not db_path.parent.exists():
            raise PersistenceError(
                f"Parent directory does not exist: {db_path.parent}",
                details={"path": str(db_path.parent)}
            )

        try:
            self._init_database()
        except sqlite3.Error as e:
            raise PersistenceError(
                f"Failed to initialize database: {e}",
                details={"path": str(db_path)}
            ) from e

    @contextmanager
    def _get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Yield the persistent connection, translating sqlite3 errors.

        The connection is created once and reused for all operations.
        A failed statement rolls back the open transaction. Once close()
        has run, every operation raises PersistenceError.
        """
        if self._closed:
            raise PersistenceError(
                "Database is closed",
                details={"path": str(self.db_path)}
            )
        if self._conn is None:
            self._conn = sqlite3.connect(
                str(self.db_path),
                timeout=30.0,
                check_same_thread=False  # We handle thread safety with _lock
            )
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode = WAL")
        try:
            yield self._conn
        except sqlite3.Error as e:
            self._conn.rollback()
            raise PersistenceError(
                f"Database operation failed: {e}",
                details={"path": str(self.db_path), "original_error": str(e)}
            ) from e

    def close(self) -> None:
        """Close the database connection. The instance cannot be reused."""
        with self._lock:
            self._closed = True
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def _init_database(self) -> None:
        with self._get_connection() as conn:
            conn.executescript(_SCHEMA_SQL)

            cursor = conn.execute("SELECT version FROM schema_version LIMIT 1")
            row = cursor.fetchone()

            if row is None:
                conn.execute("INSERT INTO schema_version (version) VALUES (?)", (DATABASE_VERSION,))
            elif row[0] != DATABASE_VERSION:
                raise PersistenceError(
                    f"Database version mismatch: expected {DATABASE_VERSION}, got {row[0]}",
                    details={"expected": DATABASE_VERSION, "actual": row[0]}
                )
            conn.commit()

    @staticmethod
    def _schedule_from_row(row: sqlite3.Row) -> ScheduleRecord:
        return ScheduleRecord(
            pair=PairKey(row["playlist_id"], row["conversation_id"]),
            trigger_time=row["trigger_time"],
            active=bool(row["active"]),
            last_run_at=from_iso(row["last_run_at"]),
        )

    @staticmethod
    def _polling_from_row(row: sqlite3.Row) -> PollingRecord:
        return PollingRecord(
            pair=PairKey(row["playlist_id"], row["conversation_id"]),
            watermark=from_iso(row["watermark"]),
            active=bool(row["active"]),
        )

    # =========================================================================
    # Schedules
    # =========================================================================

    def upsert_schedule(self, pair: PairKey, trigger_time: str) -> ScheduleRecord:
        """
        Create the schedule for a pair, or update and re-activate it.

        last_run_at is preserved across updates.
        """
        now = to_iso(utc_now())
        with self._lock:
            with self._get_connection() as conn:
                conn.execute("""
                    INSERT INTO schedules
                        (playlist_id, conversation_id, trigger_time, active, created_at, updated_at)
                    VALUES (?, ?, ?, 1, ?, ?)
                    ON CONFLICT(playlist_id, conversation_id) DO UPDATE SET
                        trigger_time = excluded.trigger_time,
                        active = 1,
                        updated_at = excluded.updated_at
                """, (pair.playlist_id, pair.conversation_id, trigger_time, now, now))
                conn.commit()
                row = conn.execute(
                    "SELECT * FROM schedules WHERE playlist_id = ? AND conversation_id = ?",
                    (pair.playlist_id, pair.conversation_id)
                ).fetchone()
                return self._schedule_from_row(row)

    def get_schedule(self, pair: PairKey, active_only: bool = True) -> ScheduleRecord | None:
        query = "SELECT * FROM schedules WHERE playlist_id = ? AND conversation_id = ?"
        if active_only:
            query += " AND active = 1"
        with self._lock:
            with self._get_connection() as conn:
                row = conn.execute(query, (pair.playlist_id, pair.conversation_id)).fetchone()
                return self._schedule_from_row(row) if row else None

    def deactivate_schedule(self, pair: PairKey) -> bool:
        """Soft-delete a schedule. Returns True if an active row was changed."""
        with self._lock:
            with self._get_connection() as conn:
                cursor = conn.execute("""
                    UPDATE schedules SET active = 0, updated_at = ?
                    WHERE playlist_id = ? AND conversation_id = ? AND active = 1
                """, (to_iso(utc_now()), pair.playlist_id, pair.conversation_id))
                conn.commit()
                return cursor.rowcount > 0

    def mark_schedule_run(self, pair: PairKey, run_at: datetime) -> None:
        with self._lock:
            with self._get_connection() as conn:
                conn.execute("""
                    UPDATE schedules SET last_run_at = ?, updated_at = ?
                    WHERE playlist_id = ? AND conversation_id = ?
                """, (to_iso(run_at), to_iso(utc_now()), pair.playlist_id, pair.conversation_id))
                conn.commit()

    def get_active_schedules(self) -> list[ScheduleRecord]:
        with self._lock:
            with self._get_connection() as conn:
                cursor = conn.execute("SELECT * FROM schedules WHERE active = 1 ORDER BY id")
                return [self._schedule_from_row(row) for row in cursor.fetchall()]

    # =========================================================================
    # Real-time polling
    # =========================================================================

    def create_or_activate_polling(
        self,
        pair: PairKey,
        initial_watermark: datetime
    ) -> tuple[PollingRecord, bool]:
        """
        Activate polling for a pair.

        An existing row keeps its watermark, so messages seen before a stop
        are never re-processed. A new row starts at initial_watermark.

        Returns:
            Tuple of (record, created) where created is True for a new row.
        """
        now = to_iso(utc_now())
        with self._lock:
            with self._get_connection() as conn:
                row = conn.execute(
                    "SELECT id FROM polling WHERE playlist_id = ? AND conversation_id = ?",
                    (pair.playlist_id, pair.conversation_id)
                ).fetchone()

                if row is None:
                    conn.execute("""
                        INSERT INTO polling
                            (playlist_id, conversation_id, watermark, active, created_at, updated_at)
                        VALUES (?, ?, ?, 1, ?, ?)
                    """, (pair.playlist_id, pair.conversation_id, to_iso(initial_watermark), now, now))
                    created = True
                else:
                    conn.execute(
                        "UPDATE polling SET active = 1, updated_at = ? WHERE id = ?",
                        (now, row["id"])
                    )
                    created = False
                conn.commit()

                row = conn.execute(
                    "SELECT * FROM polling WHERE playlist_id = ? AND conversation_id = ?",
                    (pair.playlist_id, pair.conversation_id)
                ).fetchone()
                return self._polling_from_row(row), created

    def get_polling(self, pair: PairKey, active_only: bool = False) -> PollingRecord | None:
        query = "SELECT * FROM polling WHERE playlist_id = ? AND conversation_id = ?"
        if active_only:
            query += " AND active = 1"
        with self._lock:
            with self._get_connection() as conn:
                row = conn.execute(query, (pair.playlist_id, pair.conversation_id)).fetchone()
                return self._polling_from_row(row) if row else None

    def advance_watermark(self, pair: PairKey, watermark: datetime) -> datetime | None:
        """
        Move a pair's watermark forward.

        Never moves it backward: an older value leaves the row unchanged.
        ISO-8601 UTC strings of equal format sort chronologically, so the
        comparison is done in SQL.

        Returns:
            The stored watermark after the update, or None if the pair has no row.
        """
        stamp = to_iso(watermark)
        with self._lock:
            with self._get_connection() as conn:
                conn.execute("""
                    UPDATE polling SET watermark = ?, updated_at = ?
                    WHERE playlist_id = ? AND conversation_id = ? AND watermark < ?
                """, (stamp, to_iso(utc_now()), pair.playlist_id, pair.conversation_id, stamp))
                conn.commit()
                row = conn.execute(
                    "SELECT watermark FROM polling WHERE playlist_id = ? AND conversation_id = ?",
                    (pair.playlist_id, pair.conversation_id)
                ).fetchone()
                return from_iso(row["watermark"]) if row else None

    def deactivate_polling(self, pair: PairKey) -> bool:
        with self._lock:
            with self._get_connection() as conn:
                cursor = conn.execute("""
                    UPDATE polling SET active = 0, updated_at = ?
                    WHERE playlist_id = ? AND conversation_id = ? AND active = 1
                """, (to_iso(utc_now()), pair.playlist_id, pair.conversation_id))
                conn.commit()
                return cursor.rowcount > 0

    def get_active_polling(self) -> list[PollingRecord]:
        with self._lock:
            with self._get_connection() as conn:
                cursor = conn.execute("SELECT * FROM polling WHERE active = 1 ORDER BY id")
                return [self._polling_from_row(row) for row in cursor.fetchall()]

    # =========================================================================
    # Playlist metadata cache
    # =========================================================================

    def save_playlist(self, playlist_id: str, name: str, track_count: int) -> None:
        """Create or overwrite the cached metadata of a playlist."""
        now = to_iso(utc_now())
        with self._lock:
            with self._get_connection() as conn:
                conn.execute("""
                    INSERT INTO playlists (spotify_id, name, track_count, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT(spotify_id) DO UPDATE SET
                        name = excluded.name,
                        track_count = excluded.track_count,
                        updated_at = excluded.updated_at
                """, (playlist_id, name, max(track_count, 0), now, now))
                conn.commit()

    def get_playlist_summary(self, playlist_id: str) -> PlaylistSummary | None:
        with self._lock:
            with self._get_connection() as conn:
                row = conn.execute(
                    "SELECT spotify_id, name, track_count, created_at FROM playlists WHERE spotify_id = ?",
                    (playlist_id,)
                ).fetchone()
                if row is None:
                    return None
                return PlaylistSummary(
                    playlist_id=row["spotify_id"],
                    name=row["name"] or "",
                    track_count=row["track_count"],
                    created_at=from_iso(row["created_at"]),
                )

    def adjust_playlist_track_count(self, playlist_id: str, delta: int) -> bool:
        """
        Add delta to the cached track count (clamped at zero).

        Returns:
            False if the playlist is not cached; the caller initializes it.
        """
        with self._lock:
            with self._get_connection() as conn:
                cursor = conn.execute("""
                    UPDATE playlists
                    SET track_count = MAX(track_count + ?, 0), updated_at = ?
                    WHERE spotify_id = ?
                """, (delta, to_iso(utc_now()), playlist_id))
                conn.commit()
                return cursor.rowcount > 0
