"""
Synchronization engine for playlist-mirror.

Modules:
    registry    - Live job handles per pair
    reconciler  - Applies candidate tracks to a playlist
    scheduler   - Daily schedules (CronTrigger)
    poller      - Real-time polling with a watermark (IntervalTrigger)
"""

from playlist_mirror.sync.poller import PollingRunner
from playlist_mirror.sync.reconciler import PlaylistReconciler, ReconcileOutcome
from playlist_mirror.sync.registry import JobHandle, PairRegistry
from playlist_mirror.sync.scheduler import ScheduleRunner

__all__ = [
    "JobHandle",
    "PairRegistry",
    "PlaylistReconciler",
    "ReconcileOutcome",
    "ScheduleRunner",
    "PollingRunner",
]
