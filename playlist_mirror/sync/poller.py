"""
Real-time polling for playlist-mirror.

A polled pair ticks every poll_interval seconds. Each tick reads only the
messages newer than the pair's watermark and, if any links were found,
reconciles the playlist. The watermark then moves to the time the tick
started, so a message that arrives while a tick runs is seen again on the
next tick rather than lost.

Watermark rules:
    - Set to "now" only when a pair is polled for the first time
    - Preserved across stop/start and process restarts
    - Never moves backward
    - Unchanged by ticks that found nothing or failed
"""

import threading
from datetime import datetime
from typing import Any, Callable

from apscheduler.schedulers.base import BaseScheduler
from apscheduler.triggers.interval import IntervalTrigger

from playlist_mirror.core.database import Database
from playlist_mirror.core.exceptions import (
    AlreadyActiveError,
    NotActiveError,
    NoValidTracksError,
    PlaylistMirrorError,
)
from playlist_mirror.core.logger import format_outcome_message, get_logger
from playlist_mirror.core.models import PairKey, PollingRecord, utc_now
from playlist_mirror.messages.resolver import TrackResolver
from playlist_mirror.sync.reconciler import PlaylistReconciler, ReconcileOutcome
from playlist_mirror.sync.registry import JobHandle, PairRegistry


logger = get_logger(__name__)

JOB_PREFIX = "poll"
DEFAULT_POLL_INTERVAL = 60


def poll_job_id(pair: PairKey) -> str:
    return f"{JOB_PREFIX}:{pair}"


class PollingRunner:
    """
    Owns the interval job of every polled pair.

    Args:
        scheduler: Shared APScheduler scheduler.
        registry: Registry of live polling handles (owned by this runner).
        resolver: Source of candidate tracks.
        reconciler: Applies candidates to playlists.
        database: Persistence of polling records and watermarks.
        poll_interval: Seconds between ticks.
        clock: Returns the current aware datetime; injectable for tests.
    """

    def __init__(
        self,
        scheduler: BaseScheduler,
        registry: PairRegistry,
        resolver: TrackResolver,
        reconciler: PlaylistReconciler,
        database: Database,
        poll_interval: int = DEFAULT_POLL_INTERVAL,
        clock: Callable[[], datetime] = utc_now
    ) -> None:
        self.scheduler = scheduler
        self.registry = registry
        self.resolver = resolver
        self.reconciler = reconciler
        self.database = database
        self.poll_interval = poll_interval
        self.clock = clock
        self._lock = threading.Lock()

    def start(self, pair: PairKey) -> PollingRecord:
        """
        Start polling a pair.

        Raises:
            AlreadyActiveError: If the pair is already polled by this process.
            PersistenceError: If the record cannot be stored.
        """
        with self._lock:
            if self.registry.is_active(pair):
                raise AlreadyActiveError(
                    "Real-time polling is already active for this playlist and conversation",
                    details={"pair": str(pair)}
                )
            record, created = self.database.create_or_activate_polling(pair, self.clock())
            self._register(pair)

        if created:
            logger.info(f"Started polling {pair} every {self.poll_interval}s")
        else:
            logger.info(f"Resumed polling {pair} from {record.watermark.isoformat()}")
        return record

    def resume(self, record: PollingRecord) -> None:
        """Re-register a persisted active pair after a restart."""
        with self._lock:
            if not self.registry.is_active(record.pair):
                self._register(record.pair)
        logger.debug(f"Restored polling {record.pair} from {record.watermark.isoformat()}")

    def stop(self, pair: PairKey) -> None:
        """
        Stop polling a pair. A tick already running finishes; no new tick starts.

        Raises:
            NotActiveError: If the pair is not polled by this process.
            PersistenceError: If the record cannot be deactivated. Polling
                              then keeps running.
        """
        with self._lock:
            if not self.registry.is_active(pair):
                raise NotActiveError(
                    "No active real-time polling found for this playlist and conversation",
                    details={"pair": str(pair)}
                )
            self.database.deactivate_polling(pair)
            self.registry.unregister(pair)
        logger.info(f"Stopped polling {pair}")

    def status(self, pair: PairKey) -> dict[str, Any]:
        record = self.database.get_polling(pair)
        return {
            "is_active": self.registry.is_active(pair),
            "watermark": record.watermark.isoformat() if record else None,
        }

    def tick(self, pair: PairKey) -> ReconcileOutcome | None:
        """
        Execute one tick for a pair.

        Errors are logged and swallowed so later ticks keep running.

        Returns:
            The outcome, or None if nothing was reconciled.
        """
        started_at = self.clock()
        try:
            record = self.database.get_polling(pair, active_only=True)
            if record is None:
                logger.debug(f"Polling record of {pair} is inactive, skipping tick")
                return None

            candidates = self.resolver.resolve(pair.conversation_id, since=record.watermark)
            if not candidates:
                return None

            outcome = self.reconciler.reconcile(
                pair.playlist_id, [candidate.track_id for candidate in candidates]
            )
            if outcome.success:
                logger.info(format_outcome_message(str(pair), outcome))
            else:
                logger.warning(format_outcome_message(str(pair), outcome))

            if outcome.success or outcome.error_code == NoValidTracksError.code:
                self.database.advance_watermark(pair, max(record.watermark, started_at))
            return outcome
        except PlaylistMirrorError as e:
            logger.error(f"Polling tick failed for {pair}: {e.message}", exc_info=True)
        except Exception:
            logger.exception(f"Unexpected error while polling {pair}")
        return None

    def _register(self, pair: PairKey) -> None:
        handle = JobHandle(pair=pair, scheduler=self.scheduler, job_id=poll_job_id(pair))
        self.registry.register(pair, handle)
        self.scheduler.add_job(
            self._run_tick,
            IntervalTrigger(seconds=self.poll_interval),
            args=[handle],
            id=handle.job_id,
            name=f"Poll {pair}",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )

    def _run_tick(self, handle: JobHandle) -> None:
        if handle.is_cancelled:
            return
        if not handle.busy.acquire(blocking=False):
            logger.debug(f"Previous tick for {handle.pair} still running, skipping")
            return
        try:
            self.tick(handle.pair)
        finally:
            handle.busy.release()
