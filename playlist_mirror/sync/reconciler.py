"""
Playlist reconciliation for playlist-mirror.

Given a target playlist and a list of candidate track IDs, the reconciler
brings the playlist in line with the minimal set of remote mutations:

    Filtering -> Scanning (paged) -> RemovingDuplicates* -> Appending -> Summarizing

1. Filter: keep candidates that look like Spotify track IDs (22 base62
   characters), first occurrence wins. Everything else is counted as skipped.
2. Scan: read the playlist page by page, recording the first position of
   every track and every later position of the same track as a duplicate.
3. Remove duplicates: highest position first, in batches of at most 100,
   each batch against the latest snapshot_id.
4. Append: candidates not already in the playlist, in candidate order,
   in batches of at most 50.
5. Summarize: adjust the cached track count of the playlist.

Running the same reconciliation twice converges: the second run finds
nothing to add and nothing to remove and issues no mutating call.

Partial failures are not rolled back. A batch that fails after earlier
batches succeeded leaves those in place; the next run picks up from there.
"""

import re
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Generator, Iterable

from playlist_mirror.core.config import SyncConfig
from playlist_mirror.core.database import Database
from playlist_mirror.core.exceptions import NoValidTracksError, PlaylistMirrorError
from playlist_mirror.core.logger import get_logger
from playlist_mirror.spotify.client import PlaylistService
from playlist_mirror.spotify.models import TrackSlot
from playlist_mirror.utils import chunked


logger = get_logger(__name__)


@dataclass(frozen=True)
class ReconcileOutcome:
    """
    Result of one reconciliation.

    Attributes:
        success: False only for a non-fatal failure (NoValidTracks).
                 Remote and storage failures raise instead.
        playlist_id: Target playlist.
        added_count: Tracks appended.
        removed_duplicate_count: Duplicate occurrences removed.
        skipped_invalid_count: Candidates that were not valid track IDs.
        already_present_count: Valid candidates already in the playlist.
        final_track_count: Playlist size after the run, as observed remotely.
        error: Error message when success is False.
        error_code: Taxonomy code when success is False.
    """
    success: bool
    playlist_id: str
    added_count: int = 0
    removed_duplicate_count: int = 0
    skipped_invalid_count: int = 0
    already_present_count: int = 0
    final_track_count: int = 0
    error: str | None = None
    error_code: str | None = None

    @classmethod
    def failure(cls, playlist_id: str, error: PlaylistMirrorError, **counts: int) -> "ReconcileOutcome":
        return cls(
            success=False,
            playlist_id=playlist_id,
            error=error.message,
            error_code=error.code,
            **counts
        )

    @property
    def changed(self) -> bool:
        return self.added_count > 0 or self.removed_duplicate_count > 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "playlist_id": self.playlist_id,
            "added_count": self.added_count,
            "removed_duplicate_count": self.removed_duplicate_count,
            "skipped_invalid_count": self.skipped_invalid_count,
            "already_present_count": self.already_present_count,
            "final_track_count": self.final_track_count,
            "error": self.error,
            "error_code": self.error_code,
        }


@dataclass
class PlaylistLock:
    """Lock of one playlist and the number of callers holding or waiting on it."""
    lock: threading.Lock = field(default_factory=threading.Lock)
    users: int = 0


@dataclass
class PlaylistScan:
    """State of a playlist as observed by one paginated read."""
    snapshot_id: str | None = None
    total: int = 0
    existing_ids: list[str] = field(default_factory=list)
    duplicate_slots: list[TrackSlot] = field(default_factory=list)


class PlaylistReconciler:
    """
    Applies candidate track lists to playlists.

    One instance is shared by the schedule and polling runners and by the
    facade. Calls for the same playlist are serialized; different playlists
    reconcile in parallel.
    """

    def __init__(
        self,
        playlist_service: PlaylistService,
        database: Database,
        sync_config: SyncConfig | None = None
    ) -> None:
        self.playlist_service = playlist_service
        self.database = database
        self.config = sync_config or SyncConfig()
        self._track_id_pattern = re.compile(rf"^[a-zA-Z0-9]{{{self.config.track_id_length}}}$")
        self._locks: dict[str, PlaylistLock] = {}
        self._locks_guard = threading.Lock()

    @contextmanager
    def _playlist_lock(self, playlist_id: str) -> Generator[None, None, None]:
        """Hold the lock of a playlist. The entry is dropped once nobody uses it."""
        with self._locks_guard:
            entry = self._locks.setdefault(playlist_id, PlaylistLock())
            entry.users += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._locks_guard:
                entry.users -= 1
                if entry.users == 0:
                    del self._locks[playlist_id]

    def filter_track_ids(self, candidates: Iterable[Any]) -> tuple[list[str], int]:
        """
        Keep well-formed track IDs, dropping repeats.

        Returns:
            Tuple of (valid IDs in first-seen order, number of invalid entries).
        """
        valid: list[str] = []
        seen: set[str] = set()
        skipped = 0
        for candidate in candidates:
            if not isinstance(candidate, str) or not self._track_id_pattern.match(candidate):
                skipped += 1
                continue
            if candidate not in seen:
                seen.add(candidate)
                valid.append(candidate)
        return valid, skipped

    def reconcile(self, playlist_id: str, candidate_track_ids: Iterable[Any]) -> ReconcileOutcome:
        """
        Bring a playlist in line with a list of candidate track IDs.

        Args:
            playlist_id: Target Spotify playlist.
            candidate_track_ids: Track IDs in priority order. Invalid entries
                                 and repeats are tolerated.

        Returns:
            ReconcileOutcome. A candidate list with no valid ID returns a
            failed outcome with error_code "NoValidTracks".

        Raises:
            PlaylistServiceError: If a remote call fails.
            PersistenceError: If the track count cannot be stored.
        """
        valid, skipped = self.filter_track_ids(candidate_track_ids)
        if not valid:
            logger.warning(f"No valid track IDs for playlist {playlist_id} ({skipped} skipped)")
            return ReconcileOutcome.failure(
                playlist_id,
                NoValidTracksError(
                    "No valid track IDs provided",
                    details={"playlist_id": playlist_id, "skipped_invalid_count": skipped}
                ),
                skipped_invalid_count=skipped
            )

        with self._playlist_lock(playlist_id):
            scan = self._scan(playlist_id)
            removed = self._remove_duplicates(playlist_id, scan)

            existing = set(scan.existing_ids)
            new_ids = [track_id for track_id in valid if track_id not in existing]
            already_present = len(valid) - len(new_ids)

            if not new_ids and removed == 0:
                logger.debug(f"Playlist {playlist_id} already up to date ({scan.total} tracks)")
                return ReconcileOutcome(
                    success=True,
                    playlist_id=playlist_id,
                    skipped_invalid_count=skipped,
                    already_present_count=already_present,
                    final_track_count=scan.total,
                )

            added = self.append_tracks(playlist_id, new_ids)
            self._summarize(playlist_id, added - removed)

        return ReconcileOutcome(
            success=True,
            playlist_id=playlist_id,
            added_count=added,
            removed_duplicate_count=removed,
            skipped_invalid_count=skipped,
            already_present_count=already_present,
            final_track_count=max(scan.total - removed + added, 0),
        )

    def append_tracks(self, playlist_id: str, track_ids: list[str]) -> int:
        """
        Append tracks to the end of a playlist in batches, preserving order.

        Returns:
            Number of tracks appended.
        """
        added = 0
        for batch in chunked(track_ids, self.config.add_batch_size):
            self.playlist_service.add_tracks(playlist_id, batch)
            added += len(batch)
            logger.debug(f"Added {len(batch)} tracks to {playlist_id} ({added}/{len(track_ids)})")
        return added

    def _scan(self, playlist_id: str) -> PlaylistScan:
        scan = PlaylistScan()
        seen: set[str] = set()
        offset = 0

        while True:
            page = self.playlist_service.get_tracks(playlist_id, offset, self.config.page_size)
            if offset == 0:
                scan.snapshot_id = page.snapshot_id
            scan.total = page.total

            for index, track_id in enumerate(page.items):
                if track_id is None:
                    continue
                if track_id in seen:
                    scan.duplicate_slots.append(TrackSlot(track_id, offset + index))
                else:
                    seen.add(track_id)
                    scan.existing_ids.append(track_id)

            offset += len(page.items)
            if not page.items or offset >= page.total:
                break

        return scan

    def _remove_duplicates(self, playlist_id: str, scan: PlaylistScan) -> int:
        """
        Remove every duplicate occurrence found by the scan.

        Descending order keeps the positions of later batches valid after
        earlier batches are applied.
        """
        if not scan.duplicate_slots:
            return 0

        slots = sorted(scan.duplicate_slots, key=lambda slot: slot.position, reverse=True)
        snapshot_id = scan.snapshot_id
        removed = 0

        for batch in chunked(slots, self.config.remove_batch_size):
            token = self.playlist_service.remove_tracks_by_position(playlist_id, batch, snapshot_id)
            if token is None:
                token = self.playlist_service.get_tracks(playlist_id, 0, 1).snapshot_id
            snapshot_id = token
            removed += len(batch)

        logger.info(f"Removed {removed} duplicate tracks from playlist {playlist_id}")
        return removed

    def _summarize(self, playlist_id: str, delta: int) -> None:
        if self.database.adjust_playlist_track_count(playlist_id, delta):
            return
        info = self.playlist_service.get_playlist(playlist_id)
        self.database.save_playlist(info.spotify_id, info.name, info.track_count)
