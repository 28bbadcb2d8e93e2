# tests/test_reconciler.py
"""Test playlist reconciliation"""

import pytest

from fakes import tid
from playlist_mirror.core.config import SyncConfig
from playlist_mirror.core.exceptions import PlaylistServiceError
from playlist_mirror.sync.reconciler import PlaylistReconciler


PLAYLIST = "37i9dQZF1DXcBWIGoYBM5M"


class TestFiltering:
    """Test candidate filtering"""

    def test_valid_and_invalid_candidates(self, reconciler):
        """Valid IDs are kept in order, invalid ones are counted"""
        valid, skipped = reconciler.filter_track_ids([tid("a"), "short", tid("b"), None, "x" * 23])
        assert valid == [tid("a"), tid("b")]
        assert skipped == 3

    def test_repeats_collapse_to_first_occurrence(self, reconciler):
        """Repeated IDs are not counted as invalid"""
        valid, skipped = reconciler.filter_track_ids([tid("b"), tid("a"), tid("b")])
        assert valid == [tid("b"), tid("a")]
        assert skipped == 0

    def test_non_alphanumeric_rejected(self, reconciler):
        """IDs with punctuation are not track IDs"""
        valid, skipped = reconciler.filter_track_ids(["a" * 21 + "-"])
        assert valid == []
        assert skipped == 1

    def test_configurable_length(self, playlist_service, database):
        """The ID length comes from the sync configuration"""
        reconciler = PlaylistReconciler(playlist_service, database, SyncConfig(track_id_length=5))
        valid, skipped = reconciler.filter_track_ids(["abcde", tid("a")])
        assert valid == ["abcde"]
        assert skipped == 1


class TestReconcile:
    """Test the reconcile operation"""

    def test_adds_valid_tracks_to_empty_playlist(self, reconciler, playlist_service):
        """Two valid IDs and one invalid on an empty playlist"""
        playlist_service.add_playlist(PLAYLIST)

        outcome = reconciler.reconcile(PLAYLIST, [tid("a"), tid("b"), "short"])

        assert outcome.success
        assert outcome.added_count == 2
        assert outcome.skipped_invalid_count == 1
        assert outcome.removed_duplicate_count == 0
        assert outcome.final_track_count == 2
        assert playlist_service.playlists[PLAYLIST] == [tid("a"), tid("b")]

    def test_second_run_adds_nothing(self, reconciler, playlist_service):
        """Reconciling twice converges without further mutations"""
        playlist_service.add_playlist(PLAYLIST)
        reconciler.reconcile(PLAYLIST, [tid("a"), tid("b")])
        mutations = len(playlist_service.mutations)

        outcome = reconciler.reconcile(PLAYLIST, [tid("a"), tid("b")])

        assert outcome.success
        assert outcome.added_count == 0
        assert outcome.already_present_count == 2
        assert outcome.final_track_count == 2
        assert len(playlist_service.mutations) == mutations

    def test_empty_candidates_is_no_valid_tracks(self, reconciler, playlist_service):
        """An empty list fails with NoValidTracks and touches nothing"""
        playlist_service.add_playlist(PLAYLIST)

        outcome = reconciler.reconcile(PLAYLIST, [])

        assert not outcome.success
        assert outcome.error_code == "NoValidTracks"
        assert outcome.error
        assert playlist_service.calls == []

    def test_only_invalid_candidates(self, reconciler, playlist_service):
        """Invalid-only input reports how many were skipped"""
        playlist_service.add_playlist(PLAYLIST)
        outcome = reconciler.reconcile(PLAYLIST, ["short", "also-short"])
        assert outcome.error_code == "NoValidTracks"
        assert outcome.skipped_invalid_count == 2

    def test_new_tracks_appended_in_candidate_order(self, reconciler, playlist_service):
        """Existing tracks are skipped, new ones appended in order"""
        playlist_service.add_playlist(PLAYLIST, [tid("b")])

        outcome = reconciler.reconcile(PLAYLIST, [tid("c"), tid("b"), tid("a")])

        assert outcome.added_count == 2
        assert outcome.already_present_count == 1
        assert playlist_service.playlists[PLAYLIST] == [tid("b"), tid("c"), tid("a")]

    def test_duplicate_positions_removed_descending(self, reconciler, playlist_service):
        """X at 2, 5 and 9 with Y at 1: positions 9 and 5 are removed"""
        x, y = tid("x"), tid("y")
        items = [tid("a"), y, x, tid("b"), tid("c"), x, tid("d"), tid("e"), tid("f"), x]
        playlist_service.add_playlist(PLAYLIST, items)

        outcome = reconciler.reconcile(PLAYLIST, [x])

        removals = [call for call in playlist_service.calls if call[0] == "remove_tracks_by_position"]
        assert len(removals) == 1
        assert removals[0][2] == [9, 5]
        assert outcome.removed_duplicate_count == 2
        assert outcome.added_count == 0
        assert outcome.final_track_count == 8
        remaining = playlist_service.playlists[PLAYLIST]
        assert remaining.count(x) == 1
        assert remaining.count(y) == 1
        assert remaining.index(x) == 2

    def test_removal_batches_refresh_snapshot(self, reconciler, playlist_service):
        """250 duplicates go out in batches of 100, 100 and 50 against fresh snapshots"""
        x = tid("x")
        playlist_service.add_playlist(PLAYLIST, [x] * 251)

        outcome = reconciler.reconcile(PLAYLIST, [x])

        removals = [call for call in playlist_service.calls if call[0] == "remove_tracks_by_position"]
        assert [len(call[2]) for call in removals] == [100, 100, 50]
        assert removals[0][2][0] == 250
        assert removals[-1][2][-1] == 1
        assert removals[0][3] == f"{PLAYLIST}-v0"
        assert removals[1][3] == f"{PLAYLIST}-v1"
        assert outcome.removed_duplicate_count == 250
        assert playlist_service.playlists[PLAYLIST] == [x]

    def test_snapshot_reread_when_removal_returns_none(self, reconciler, playlist_service):
        """Without a token from the removal, the snapshot is read again"""
        x = tid("x")
        playlist_service.add_playlist(PLAYLIST, [x] * 151)
        playlist_service.remove_returns_snapshot = False

        outcome = reconciler.reconcile(PLAYLIST, [x])

        assert outcome.removed_duplicate_count == 150
        assert ("get_tracks", PLAYLIST, 0, 1) in playlist_service.calls

    def test_items_without_id_keep_their_position(self, reconciler, playlist_service):
        """Local files occupy positions but are never removed"""
        x = tid("x")
        playlist_service.add_playlist(PLAYLIST, [None, x, None, x])

        outcome = reconciler.reconcile(PLAYLIST, [x])

        removals = [call for call in playlist_service.calls if call[0] == "remove_tracks_by_position"]
        assert removals[0][2] == [3]
        assert outcome.removed_duplicate_count == 1
        assert playlist_service.playlists[PLAYLIST] == [None, x, None]

    def test_pagination(self, reconciler, playlist_service):
        """Large playlists are read page by page"""
        items = [f"{i:022d}" for i in range(250)]
        playlist_service.add_playlist(PLAYLIST, items)

        outcome = reconciler.reconcile(PLAYLIST, [items[0], tid("n")])

        offsets = [call[2] for call in playlist_service.calls if call[0] == "get_tracks"]
        assert offsets == [0, 100, 200]
        assert outcome.added_count == 1
        assert outcome.already_present_count == 1
        assert outcome.final_track_count == 251

    def test_add_batches_of_fifty(self, reconciler, playlist_service):
        """120 new tracks are appended as 50, 50 and 20"""
        playlist_service.add_playlist(PLAYLIST)
        candidates = [f"{i:022d}" for i in range(120)]

        outcome = reconciler.reconcile(PLAYLIST, candidates)

        adds = [call[2] for call in playlist_service.calls if call[0] == "add_tracks"]
        assert [len(batch) for batch in adds] == [50, 50, 20]
        assert adds[0][0] == candidates[0]
        assert adds[2][-1] == candidates[-1]
        assert outcome.added_count == 120

    def test_remote_failure_raises(self, reconciler, playlist_service):
        """Remote errors propagate to the caller"""
        playlist_service.add_playlist(PLAYLIST)
        playlist_service.fail_on.add("add_tracks")

        with pytest.raises(PlaylistServiceError):
            reconciler.reconcile(PLAYLIST, [tid("a")])

    def test_unknown_playlist_raises(self, reconciler):
        """A missing playlist is a remote error"""
        with pytest.raises(PlaylistServiceError):
            reconciler.reconcile("missing", [tid("a")])

    def test_playlist_locks_are_dropped(self, reconciler, playlist_service):
        """Per-playlist locks do not outlive the calls that use them"""
        playlist_service.add_playlist(PLAYLIST)
        reconciler.reconcile(PLAYLIST, [tid("a")])
        with pytest.raises(PlaylistServiceError):
            reconciler.reconcile("missing", [tid("a")])

        assert reconciler._locks == {}

    def test_playlist_lock_entry_exists_while_held(self, reconciler):
        with reconciler._playlist_lock(PLAYLIST):
            assert reconciler._locks[PLAYLIST].users == 1
            assert reconciler._locks[PLAYLIST].lock.locked()
        assert reconciler._locks == {}


class TestSummary:
    """Test the cached track count"""

    def test_initialized_from_remote_when_missing(self, reconciler, playlist_service, database):
        """First reconciliation stores the remote track total"""
        playlist_service.add_playlist(PLAYLIST, [tid("a")], name="Road trip")

        reconciler.reconcile(PLAYLIST, [tid("b"), tid("c")])

        summary = database.get_playlist_summary(PLAYLIST)
        assert summary.name == "Road trip"
        assert summary.track_count == 3

    def test_adjusted_by_added_minus_removed(self, reconciler, playlist_service, database):
        """Cached count moves by (added - removed)"""
        x = tid("x")
        playlist_service.add_playlist(PLAYLIST, [x, x, x])
        database.save_playlist(PLAYLIST, "Cached", 10)

        reconciler.reconcile(PLAYLIST, [x, tid("a")])

        assert database.get_playlist_summary(PLAYLIST).track_count == 9

    def test_noop_leaves_summary_untouched(self, reconciler, playlist_service, database):
        """Nothing to do means no summary write"""
        playlist_service.add_playlist(PLAYLIST, [tid("a")])
        reconciler.reconcile(PLAYLIST, [tid("a")])
        assert database.get_playlist_summary(PLAYLIST) is None


class TestOutcome:
    """Test outcome serialization"""

    def test_to_dict(self, reconciler, playlist_service):
        playlist_service.add_playlist(PLAYLIST)
        data = reconciler.reconcile(PLAYLIST, [tid("a")]).to_dict()
        assert data["success"] is True
        assert data["playlist_id"] == PLAYLIST
        assert data["added_count"] == 1
        assert data["error"] is None
        assert data["error_code"] is None
