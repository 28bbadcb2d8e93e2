"""
Caller-facing facade of playlist-mirror.

SyncService wires the resolver, the playlist service, the database and
the two runners together, restores persisted pairs on start-up, and
exposes every operation as a method returning a plain dictionary:

    {"success": True, ...payload}
    {"success": False, "error": "<message>", "code": "<taxonomy code>"}

No exception escapes a facade method.

Usage:
    service = SyncService(playlist_service, resolver, database, config.sync)
    service.start()

    result = service.create_or_update_schedule(playlist_id, "42", "13:30")
    if not result["success"]:
        print(result["error"])

    service.shutdown()
"""

import functools
import threading
from datetime import datetime
from typing import Any, Callable, Iterable

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.schedulers.base import BaseScheduler

from playlist_mirror.core.config import SyncConfig
from playlist_mirror.core.database import Database
from playlist_mirror.core.exceptions import (
    NoValidTracksError,
    PlaylistMirrorError,
    ServiceNotReadyError,
)
from playlist_mirror.core.logger import get_logger
from playlist_mirror.core.models import PairKey, utc_now
from playlist_mirror.messages.resolver import TrackResolver
from playlist_mirror.spotify.client import PlaylistService
from playlist_mirror.sync.poller import PollingRunner
from playlist_mirror.sync.reconciler import PlaylistReconciler
from playlist_mirror.sync.registry import PairRegistry
from playlist_mirror.sync.scheduler import ScheduleRunner


logger = get_logger(__name__)

DEFAULT_PLAYLIST_DESCRIPTION = "Created from iMessage Spotify links"
INTERNAL_ERROR_CODE = "InternalError"


def error_response(error: PlaylistMirrorError) -> dict[str, Any]:
    return {"success": False, "error": error.message, "code": error.code}


def facade_operation(func: Callable[..., dict[str, Any]]) -> Callable[..., dict[str, Any]]:
    """Turn exceptions raised by a facade method into error responses."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> dict[str, Any]:
        try:
            return func(*args, **kwargs)
        except PlaylistMirrorError as e:
            logger.debug(f"{func.__name__} failed: {e.code}: {e.message}")
            return error_response(e)
        except Exception as e:
            logger.exception(f"Unexpected error in {func.__name__}")
            return {"success": False, "error": str(e), "code": INTERNAL_ERROR_CODE}

    return wrapper


class SyncService:
    """
    Facade over the synchronization engine.

    Attributes:
        scheduler: The APScheduler scheduler running every job.
        reconciler: Shared PlaylistReconciler.
        schedules: ScheduleRunner with its own PairRegistry.
        polling: PollingRunner with its own PairRegistry.

    Lifecycle:
        1. __init__: build components, nothing runs yet
        2. start(): replay active records, then start the scheduler
        3. shutdown(): cancel every handle and stop the scheduler

        Pair operations called before start() finished return the
        "ServiceNotReady" error.
    """

    def __init__(
        self,
        playlist_service: PlaylistService,
        resolver: TrackResolver,
        database: Database,
        sync_config: SyncConfig | None = None,
        scheduler: BaseScheduler | None = None,
        clock: Callable[[], datetime] = utc_now,
        timezone=None
    ) -> None:
        self.playlist_service = playlist_service
        self.resolver = resolver
        self.database = database
        self.config = sync_config or SyncConfig()
        self.scheduler = scheduler or BackgroundScheduler()

        self.reconciler = PlaylistReconciler(playlist_service, database, self.config)
        self.schedules = ScheduleRunner(
            self.scheduler,
            PairRegistry("schedules"),
            resolver,
            self.reconciler,
            database,
            clock=clock,
            timezone=timezone,
        )
        self.polling = PollingRunner(
            self.scheduler,
            PairRegistry("polling"),
            resolver,
            self.reconciler,
            database,
            poll_interval=self.config.poll_interval,
            clock=clock,
        )

        self._lock = threading.Lock()
        self._restored = threading.Event()

    # =========================================================================
    # Lifecycle
    # =========================================================================

    @property
    def is_ready(self) -> bool:
        return self._restored.is_set()

    def start(self, start_scheduler: bool = True) -> dict[str, int]:
        """
        Restore every active pair, then start the scheduler.

        A record that cannot be restored (for example a corrupted trigger
        time) is logged and skipped; the others still start.

        Args:
            start_scheduler: Start the BackgroundScheduler thread. Tests pass
                             False and drive fires directly.

        Returns:
            Counts of restored schedules and polled pairs.

        Raises:
            PersistenceError: If the active records cannot be read.
        """
        restored = {"schedules": 0, "polling": 0}
        with self._lock:
            if not self._restored.is_set():
                for schedule in self.database.get_active_schedules():
                    try:
                        self.schedules.resume(schedule)
                        restored["schedules"] += 1
                    except PlaylistMirrorError as e:
                        logger.error(f"Could not restore schedule {schedule.pair}: {e.message}")

                for record in self.database.get_active_polling():
                    self.polling.resume(record)
                    restored["polling"] += 1

                self._restored.set()
                logger.info(
                    f"Restored {restored['schedules']} schedules and {restored['polling']} polled pairs"
                )

        if start_scheduler and not self.scheduler.running:
            self.scheduler.start()
        return restored

    def shutdown(self, wait: bool = False) -> None:
        """
        Cancel every live handle and stop the scheduler. Persisted records stay active.

        Args:
            wait: Block until fires already running have finished.
        """
        with self._lock:
            self.schedules.registry.clear()
            self.polling.registry.clear()
            self._restored.clear()
        if self.scheduler.running:
            self.scheduler.shutdown(wait=wait)
        logger.debug("Sync service stopped")

    def _ensure_ready(self) -> None:
        if not self._restored.is_set():
            raise ServiceNotReadyError(
                "Service is still restoring persisted pairs, try again shortly"
            )

    # =========================================================================
    # Daily schedules
    # =========================================================================

    @facade_operation
    def create_or_update_schedule(
        self,
        playlist_id: str,
        conversation_id: str,
        trigger_time: str
    ) -> dict[str, Any]:
        self._ensure_ready()
        pair = PairKey(playlist_id, str(conversation_id))
        existed = self.schedules.get(pair) is not None
        record = self.schedules.create_or_update(pair, trigger_time)
        return {
            "success": True,
            "schedule": record.to_dict(),
            "message": "Schedule updated" if existed else "Schedule created",
        }

    @facade_operation
    def delete_schedule(self, playlist_id: str, conversation_id: str) -> dict[str, Any]:
        self._ensure_ready()
        deleted = self.schedules.delete(PairKey(playlist_id, str(conversation_id)))
        return {
            "success": True,
            "deleted": deleted,
            "message": "Schedule deleted" if deleted else "No schedule found",
        }

    @facade_operation
    def get_schedule(self, playlist_id: str, conversation_id: str) -> dict[str, Any]:
        self._ensure_ready()
        pair = PairKey(playlist_id, str(conversation_id))
        record = self.schedules.get(pair)
        next_fire = self.schedules.next_fire_time(pair)
        return {
            "success": True,
            "schedule": record.to_dict() if record else None,
            "next_fire_time": next_fire.isoformat() if next_fire else None,
        }

    # =========================================================================
    # Real-time polling
    # =========================================================================

    @facade_operation
    def start_polling(self, playlist_id: str, conversation_id: str) -> dict[str, Any]:
        self._ensure_ready()
        record = self.polling.start(PairKey(playlist_id, str(conversation_id)))
        return {
            "success": True,
            "polling": record.to_dict(),
            "message": "Real-time polling started successfully",
        }

    @facade_operation
    def stop_polling(self, playlist_id: str, conversation_id: str) -> dict[str, Any]:
        self._ensure_ready()
        self.polling.stop(PairKey(playlist_id, str(conversation_id)))
        return {"success": True, "message": "Real-time polling stopped successfully"}

    @facade_operation
    def get_polling_status(self, playlist_id: str, conversation_id: str) -> dict[str, Any]:
        self._ensure_ready()
        status = self.polling.status(PairKey(playlist_id, str(conversation_id)))
        return {"success": True, **status}

    @facade_operation
    def list_active_pairs(self) -> dict[str, Any]:
        self._ensure_ready()
        schedules = []
        for pair in self.schedules.registry.keys():
            record = self.schedules.get(pair)
            next_fire = self.schedules.next_fire_time(pair)
            schedules.append({
                **(record.to_dict() if record else {
                    "playlist_id": pair.playlist_id,
                    "conversation_id": pair.conversation_id,
                }),
                "next_fire_time": next_fire.isoformat() if next_fire else None,
            })
        polling = [
            {"playlist_id": pair.playlist_id, "conversation_id": pair.conversation_id,
             **self.polling.status(pair)}
            for pair in self.polling.registry.keys()
        ]
        return {"success": True, "schedules": schedules, "polling": polling}

    # =========================================================================
    # Playlists
    # =========================================================================

    @facade_operation
    def reconcile_now(self, playlist_id: str, track_ids: Iterable[Any]) -> dict[str, Any]:
        outcome = self.reconciler.reconcile(playlist_id, list(track_ids))
        if not outcome.success:
            return {"success": False, "error": outcome.error, "code": outcome.error_code}
        return {"success": True, "outcome": outcome.to_dict()}

    @facade_operation
    def create_playlist_from_links(
        self,
        name: str,
        description: str | None,
        track_ids: Iterable[Any]
    ) -> dict[str, Any]:
        """
        Create a playlist and fill it with the valid track IDs given.

        Nothing is created if none of the track IDs is valid.
        """
        valid, skipped = self.reconciler.filter_track_ids(track_ids)
        if not valid:
            raise NoValidTracksError(
                "No valid track IDs provided",
                details={"skipped_invalid_count": skipped}
            )

        info = self.playlist_service.create_playlist(name, description or DEFAULT_PLAYLIST_DESCRIPTION)
        added = self.reconciler.append_tracks(info.spotify_id, valid)
        self.database.save_playlist(info.spotify_id, info.name or name, added)

        playlist = info.to_dict()
        playlist["track_count"] = added
        return {
            "success": True,
            "playlist": playlist,
            "added_count": added,
            "skipped_invalid_count": skipped,
        }

    @facade_operation
    def list_playlists(self) -> dict[str, Any]:
        playlists = self.playlist_service.list_playlists()
        return {"success": True, "playlists": [playlist.to_dict() for playlist in playlists]}

    # =========================================================================
    # Conversations
    # =========================================================================

    @facade_operation
    def list_conversations(self) -> dict[str, Any]:
        conversations = self.resolver.list_conversations()
        return {"success": True, "conversations": [c.to_dict() for c in conversations]}

    @facade_operation
    def get_conversation_links(self, conversation_id: str) -> dict[str, Any]:
        candidates = self.resolver.resolve(str(conversation_id))
        return {"success": True, "links": [candidate.to_dict() for candidate in candidates]}
