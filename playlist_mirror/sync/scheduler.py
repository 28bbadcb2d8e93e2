"""
Daily schedules for playlist-mirror.

A schedule fires once a day at a wall-clock time in the process's local
time zone. Each fire reads the whole conversation (no watermark) and
reconciles the playlist against every link found, so a missed day is
caught up by the next fire.

Jobs live in a shared APScheduler BackgroundScheduler under the stable ID
"schedule:<playlist_id>:<conversation_id>", with max_instances=1 and
coalesce=True so a slow fire never overlaps the next one.

Usage:
    runner = ScheduleRunner(scheduler, PairRegistry("schedules"), resolver, reconciler, database)
    runner.create_or_update(PairKey(playlist_id, "42"), "13:30")
"""

import threading
from datetime import datetime
from typing import Callable

from apscheduler.schedulers.base import BaseScheduler
from apscheduler.triggers.cron import CronTrigger

from playlist_mirror.core.database import Database
from playlist_mirror.core.exceptions import PersistenceError, PlaylistMirrorError
from playlist_mirror.core.logger import format_outcome_message, get_logger
from playlist_mirror.core.models import PairKey, ScheduleRecord, utc_now
from playlist_mirror.messages.resolver import TrackResolver
from playlist_mirror.sync.reconciler import PlaylistReconciler, ReconcileOutcome
from playlist_mirror.sync.registry import JobHandle, PairRegistry
from playlist_mirror.utils import parse_trigger_time


logger = get_logger(__name__)

JOB_PREFIX = "schedule"

# A fire delayed by more than this (process asleep, scheduler busy) is skipped
MISFIRE_GRACE_SECONDS = 3600


def schedule_job_id(pair: PairKey) -> str:
    return f"{JOB_PREFIX}:{pair}"


class ScheduleRunner:
    """
    Owns the daily trigger of every scheduled pair.

    Args:
        scheduler: Shared APScheduler scheduler. It may be started later;
                   jobs added before start() stay pending.
        registry: Registry of live schedule handles (owned by this runner).
        resolver: Source of candidate tracks.
        reconciler: Applies candidates to playlists.
        database: Persistence of schedule records.
        clock: Returns the current aware datetime; injectable for tests.
        timezone: Time zone of trigger times. None means the local zone.
    """

    def __init__(
        self,
        scheduler: BaseScheduler,
        registry: PairRegistry,
        resolver: TrackResolver,
        reconciler: PlaylistReconciler,
        database: Database,
        clock: Callable[[], datetime] = utc_now,
        timezone=None
    ) -> None:
        self.scheduler = scheduler
        self.registry = registry
        self.resolver = resolver
        self.reconciler = reconciler
        self.database = database
        self.clock = clock
        self.timezone = timezone
        self._lock = threading.Lock()

    def create_or_update(self, pair: PairKey, trigger_time: str) -> ScheduleRecord:
        """
        Create or replace the daily schedule of a pair.

        Raises:
            InvalidTimeFormatError: If trigger_time is not a 24-hour HH:mm time.
            PersistenceError: If the record cannot be stored.
        """
        hour, minute = parse_trigger_time(trigger_time)
        with self._lock:
            record = self.database.upsert_schedule(pair, trigger_time)
            self._register(pair, hour, minute)
        logger.info(f"Scheduled {pair} daily at {trigger_time}")
        return record

    def resume(self, record: ScheduleRecord) -> None:
        """Re-register a persisted active schedule after a restart."""
        hour, minute = parse_trigger_time(record.trigger_time)
        with self._lock:
            self._register(record.pair, hour, minute)
        logger.debug(f"Restored schedule {record.pair} at {record.trigger_time}")

    def delete(self, pair: PairKey) -> bool:
        """
        Deactivate the schedule of a pair and cancel its trigger.

        Returns:
            False if the pair had neither an active record nor a live trigger.
        """
        with self._lock:
            deactivated = self.database.deactivate_schedule(pair)
            was_live = self.registry.unregister(pair)
        if deactivated or was_live:
            logger.info(f"Deleted schedule {pair}")
        return deactivated or was_live

    def get(self, pair: PairKey) -> ScheduleRecord | None:
        return self.database.get_schedule(pair)

    def next_fire_time(self, pair: PairKey) -> datetime | None:
        """Next instant the pair's trigger fires, or None if it is not live."""
        handle = self.registry.get(pair)
        if handle is None:
            return None
        job = self.scheduler.get_job(handle.job_id)
        if job is None:
            return None
        # Jobs of a scheduler that has not been started yet have no next_run_time
        next_run = getattr(job, "next_run_time", None)
        if next_run is None:
            next_run = job.trigger.get_next_fire_time(None, self.clock())
        return next_run

    def run_once(self, pair: PairKey) -> ReconcileOutcome | None:
        """
        Execute one fire: full read of the conversation, then reconcile.

        Errors are logged and swallowed so the next daily fire still happens.
        last_run_at is recorded whatever the result.

        Returns:
            The outcome, or None if there was nothing to reconcile or the
            fire failed.
        """
        fired_at = self.clock()
        outcome = None
        try:
            candidates = self.resolver.resolve(pair.conversation_id)
            if not candidates:
                logger.info(f"No track links in conversation {pair.conversation_id} for {pair}")
            else:
                outcome = self.reconciler.reconcile(
                    pair.playlist_id, [candidate.track_id for candidate in candidates]
                )
                logger.info(format_outcome_message(str(pair), outcome))
        except PlaylistMirrorError as e:
            logger.error(f"Scheduled sync failed for {pair}: {e.message}", exc_info=True)
        except Exception:
            logger.exception(f"Unexpected error in scheduled sync for {pair}")
        finally:
            try:
                self.database.mark_schedule_run(pair, fired_at)
            except PersistenceError as e:
                logger.error(f"Could not record run of {pair}: {e.message}")
        return outcome

    def _register(self, pair: PairKey, hour: int, minute: int) -> None:
        handle = JobHandle(pair=pair, scheduler=self.scheduler, job_id=schedule_job_id(pair))
        # Register first: replacing a handle removes its job, which shares this ID
        self.registry.register(pair, handle)
        self.scheduler.add_job(
            self._fire,
            CronTrigger(hour=hour, minute=minute, timezone=self.timezone),
            args=[handle],
            id=handle.job_id,
            name=f"Daily sync {pair}",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=MISFIRE_GRACE_SECONDS,
        )

    def _fire(self, handle: JobHandle) -> None:
        if handle.is_cancelled:
            return
        if not handle.busy.acquire(blocking=False):
            logger.warning(f"Previous scheduled sync for {handle.pair} still running, skipping")
            return
        try:
            self.run_once(handle.pair)
        finally:
            handle.busy.release()
