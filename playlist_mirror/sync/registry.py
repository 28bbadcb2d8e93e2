"""
In-memory registry of live pairs.

Each runner owns one PairRegistry mapping a PairKey to the JobHandle of
its scheduler job. The registry is the single answer to "is this pair
running in this process?"; the database only records intent.

Invariant: at most one live handle per key. Registering a key that is
already present cancels the previous handle first.
"""

import threading
from dataclasses import dataclass, field
from typing import Iterator

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.base import BaseScheduler

from playlist_mirror.core.logger import get_logger
from playlist_mirror.core.models import PairKey


logger = get_logger(__name__)


@dataclass
class JobHandle:
    """
    Process-local handle to the scheduler job of one pair.

    Attributes:
        pair: Pair the job belongs to.
        scheduler: Scheduler holding the job.
        job_id: Stable job ID ("schedule:<pair>" or "poll:<pair>").
        cancelled: Set once the handle is cancelled. A fire that was
                   dispatched before cancellation checks it and returns.
        busy: Held while a fire body runs; a second fire that finds it
              taken is skipped.
    """
    pair: PairKey
    scheduler: BaseScheduler
    job_id: str
    cancelled: threading.Event = field(default_factory=threading.Event)
    busy: threading.Lock = field(default_factory=threading.Lock)

    @property
    def is_cancelled(self) -> bool:
        return self.cancelled.is_set()

    def cancel(self) -> None:
        """Signal cancellation and remove the job. Safe to call twice."""
        self.cancelled.set()
        try:
            self.scheduler.remove_job(self.job_id)
        except JobLookupError:
            pass


class PairRegistry:
    """Thread-safe map of PairKey to JobHandle."""

    def __init__(self, name: str = "pairs") -> None:
        self.name = name
        self._handles: dict[PairKey, JobHandle] = {}
        self._lock = threading.Lock()

    def register(self, pair: PairKey, handle: JobHandle) -> None:
        """Store a handle, cancelling any handle already registered for the pair."""
        with self._lock:
            previous = self._handles.pop(pair, None)
            if previous is not None and previous is not handle:
                logger.debug(f"[{self.name}] Replacing live handle for {pair}")
                previous.cancel()
            self._handles[pair] = handle

    def unregister(self, pair: PairKey) -> bool:
        """
        Cancel and remove the handle of a pair.

        Returns:
            False if the pair was not registered.
        """
        with self._lock:
            handle = self._handles.pop(pair, None)
        if handle is None:
            return False
        handle.cancel()
        return True

    def get(self, pair: PairKey) -> JobHandle | None:
        with self._lock:
            return self._handles.get(pair)

    def is_active(self, pair: PairKey) -> bool:
        with self._lock:
            return pair in self._handles

    def keys(self) -> list[PairKey]:
        with self._lock:
            return list(self._handles)

    def clear(self) -> None:
        """Cancel every handle and empty the registry."""
        with self._lock:
            handles = list(self._handles.values())
            self._handles.clear()
        for handle in handles:
            handle.cancel()

    def __len__(self) -> int:
        with self._lock:
            return len(self._handles)

    def __contains__(self, pair: object) -> bool:
        with self._lock:
            return pair in self._handles

    def __iter__(self) -> Iterator[PairKey]:
        return iter(self.keys())
