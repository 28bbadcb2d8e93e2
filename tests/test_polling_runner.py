# tests/test_polling_runner.py
"""Test real-time polling"""

from datetime import timedelta

import pytest

from fakes import tid
from playlist_mirror.core.exceptions import (
    AlreadyActiveError,
    NotActiveError,
    PersistenceError,
    ResolverError,
)
from playlist_mirror.core.models import PairKey
from playlist_mirror.sync.poller import PollingRunner, poll_job_id
from playlist_mirror.sync.registry import PairRegistry


PLAYLIST = "37i9dQZF1DXcBWIGoYBM5M"
PAIR = PairKey(PLAYLIST, "42")


@pytest.fixture
def runner(scheduler, resolver, reconciler, database, clock):
    return PollingRunner(
        scheduler,
        PairRegistry("polling"),
        resolver,
        reconciler,
        database,
        poll_interval=60,
        clock=clock,
    )


@pytest.fixture
def polled(runner, playlist_service):
    """Pair under polling with an empty target playlist"""
    playlist_service.add_playlist(PLAYLIST)
    runner.start(PAIR)
    return runner


def _watermark(database):
    return database.get_polling(PAIR).watermark


class TestStartStop:
    """Test polling lifecycle"""

    def test_start_sets_watermark_to_now(self, runner, scheduler, database, clock):
        record = runner.start(PAIR)

        assert record.watermark == clock.now
        assert record.active
        assert runner.registry.is_active(PAIR)
        job = scheduler.get_job(poll_job_id(PAIR))
        assert job.trigger.interval == timedelta(seconds=60)
        assert job.max_instances == 1

    def test_start_twice_raises(self, runner):
        runner.start(PAIR)
        with pytest.raises(AlreadyActiveError):
            runner.start(PAIR)
        assert len(runner.registry) == 1

    def test_stop_never_started_raises(self, runner):
        with pytest.raises(NotActiveError):
            runner.stop(PAIR)

    def test_stop(self, polled, scheduler, database):
        polled.stop(PAIR)

        assert not polled.registry.is_active(PAIR)
        assert scheduler.get_job(poll_job_id(PAIR)) is None
        assert database.get_polling(PAIR).active is False

    def test_stop_failure_keeps_polling(self, polled, scheduler, database, monkeypatch):
        """A stop whose record cannot be deactivated leaves polling running and can be retried"""

        def fail(pair):
            raise PersistenceError("disk I/O error")

        monkeypatch.setattr(database, "deactivate_polling", fail)

        with pytest.raises(PersistenceError):
            polled.stop(PAIR)

        assert polled.registry.is_active(PAIR)
        assert scheduler.get_job(poll_job_id(PAIR)) is not None
        assert database.get_polling(PAIR).active

        monkeypatch.undo()
        polled.stop(PAIR)

        assert not polled.registry.is_active(PAIR)
        assert database.get_polling(PAIR).active is False

    def test_restart_preserves_watermark(self, polled, database, clock):
        """Stopping and starting again does not skip or reset the window"""
        first = _watermark(database)
        polled.stop(PAIR)
        clock.advance(hours=3)

        record = polled.start(PAIR)

        assert record.watermark == first
        assert _watermark(database) == first

    def test_status(self, polled, clock):
        assert polled.status(PAIR) == {"is_active": True, "watermark": clock.now.isoformat()}

    def test_status_unknown_pair(self, runner):
        assert runner.status(PAIR) == {"is_active": False, "watermark": None}

    def test_resume(self, runner, database, clock):
        record, _ = database.create_or_activate_polling(PAIR, clock.now - timedelta(days=1))
        runner.resume(record)
        assert runner.registry.is_active(PAIR)
        assert _watermark(database) == clock.now - timedelta(days=1)


class TestTick:
    """Test the tick body and the watermark rules"""

    def test_new_links_are_added(self, polled, resolver, playlist_service, database, clock):
        start = clock.now
        resolver.add_message("42", tid("a"), start + timedelta(seconds=30))
        tick_time = clock.advance(seconds=60)

        outcome = polled.tick(PAIR)

        assert outcome.added_count == 1
        assert resolver.calls[-1] == ("42", start)
        assert playlist_service.playlists[PLAYLIST] == [tid("a")]
        assert _watermark(database) == tick_time

    def test_old_links_are_ignored(self, polled, resolver, playlist_service, clock):
        """Messages before polling started are not picked up"""
        resolver.add_message("42", tid("a"), clock.now - timedelta(minutes=5))
        clock.advance(seconds=60)

        assert polled.tick(PAIR) is None
        assert playlist_service.playlists[PLAYLIST] == []

    def test_empty_tick_keeps_watermark(self, polled, database, clock):
        start = clock.now
        clock.advance(seconds=60)

        assert polled.tick(PAIR) is None
        assert _watermark(database) == start

    def test_failed_tick_keeps_watermark_and_recovers(self, polled, resolver, playlist_service, database, clock):
        """A remote failure is retried with the same window on the next tick"""
        start = clock.now
        resolver.add_message("42", tid("a"), start + timedelta(seconds=10))
        playlist_service.fail_on.add("add_tracks")
        clock.advance(seconds=60)

        assert polled.tick(PAIR) is None
        assert _watermark(database) == start

        playlist_service.fail_on.clear()
        tick_time = clock.advance(seconds=60)
        outcome = polled.tick(PAIR)

        assert outcome.added_count == 1
        assert _watermark(database) == tick_time

    def test_resolver_failure_does_not_escape(self, polled, resolver, database, clock):
        start = clock.now
        resolver.error = ResolverError("chat.db locked")
        clock.advance(seconds=60)

        assert polled.tick(PAIR) is None
        assert _watermark(database) == start

    def test_no_valid_tracks_advances_watermark(self, polled, resolver, database, clock):
        """Links without a valid track ID are not retried forever"""
        resolver.add_message("42", "short", clock.now + timedelta(seconds=5))
        tick_time = clock.advance(seconds=60)

        outcome = polled.tick(PAIR)

        assert outcome.error_code == "NoValidTracks"
        assert _watermark(database) == tick_time

    def test_watermark_never_regresses(self, polled, resolver, database, clock):
        """A clock that jumps backwards cannot move the watermark back"""
        resolver.add_message("42", tid("a"), clock.now + timedelta(seconds=5))
        first_tick = clock.advance(seconds=60)
        polled.tick(PAIR)

        resolver.add_message("42", tid("b"), first_tick + timedelta(seconds=5))
        clock.now = first_tick - timedelta(minutes=10)
        polled.tick(PAIR)

        assert _watermark(database) == first_tick

    def test_watermark_monotonic_over_many_ticks(self, polled, resolver, database, clock):
        previous = _watermark(database)
        for i in range(5):
            resolver.add_message("42", f"{i:022d}", clock.now + timedelta(seconds=1))
            clock.advance(seconds=60)
            polled.tick(PAIR)
            current = _watermark(database)
            assert current >= previous
            previous = current

    def test_tick_after_stop_does_nothing(self, polled, resolver, clock):
        polled.stop(PAIR)
        resolver.add_message("42", tid("a"), clock.now + timedelta(seconds=5))
        clock.advance(seconds=60)
        calls = len(resolver.calls)

        assert polled.tick(PAIR) is None
        assert len(resolver.calls) == calls

    def test_job_runs_tick(self, polled, scheduler, resolver, playlist_service, clock):
        resolver.add_message("42", tid("a"), clock.now + timedelta(seconds=5))
        clock.advance(seconds=60)
        job = scheduler.get_job(poll_job_id(PAIR))

        job.func(*job.args)

        assert playlist_service.playlists[PLAYLIST] == [tid("a")]

    def test_busy_handle_skips_tick(self, polled, scheduler, resolver):
        job = scheduler.get_job(poll_job_id(PAIR))
        handle = polled.registry.get(PAIR)

        with handle.busy:
            job.func(*job.args)

        assert resolver.calls == []

    def test_cancelled_handle_skips_tick(self, polled, scheduler, resolver):
        job = scheduler.get_job(poll_job_id(PAIR))
        handle = polled.registry.get(PAIR)
        polled.stop(PAIR)

        job.func(*job.args)

        assert handle.is_cancelled
        assert resolver.calls == []
