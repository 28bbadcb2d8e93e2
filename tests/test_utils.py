# tests/test_utils.py
"""Test utilities and helpers"""

import pytest

from playlist_mirror.core.exceptions import InvalidTimeFormatError
from playlist_mirror.core.logger import format_outcome_message, parse_size
from playlist_mirror.core.models import PairKey
from playlist_mirror.sync.reconciler import ReconcileOutcome
from playlist_mirror.utils import chunked, parse_trigger_time


class TestHelpers:
    """Test helper functions"""

    def test_parse_trigger_time(self):
        """Test trigger time parsing"""
        assert parse_trigger_time("13:30") == (13, 30)
        assert parse_trigger_time("09:05") == (9, 5)
        assert parse_trigger_time("9:05") == (9, 5)
        assert parse_trigger_time("00:00") == (0, 0)
        assert parse_trigger_time("23:59") == (23, 59)

    @pytest.mark.parametrize("value", ["25:00", "24:00", "12:60", "1330", "12:5", "noon", "", " 12:00", None])
    def test_parse_trigger_time_invalid(self, value):
        """Test rejected trigger times"""
        with pytest.raises(InvalidTimeFormatError) as exc_info:
            parse_trigger_time(value)
        assert exc_info.value.message == "Invalid time format. Please use HH:mm format (e.g., 13:30)"

    def test_chunked(self):
        """Test batching"""
        assert list(chunked([1, 2, 3, 4, 5], 2)) == [[1, 2], [3, 4], [5]]
        assert list(chunked([], 3)) == []
        assert [len(batch) for batch in chunked(list(range(250)), 100)] == [100, 100, 50]

    def test_chunked_invalid_size(self):
        with pytest.raises(ValueError):
            list(chunked([1], 0))

    def test_parse_size(self):
        """Test log size parsing"""
        assert parse_size("10MB") == 10 * 1024 * 1024
        assert parse_size("500kb") == 500 * 1024
        assert parse_size("1.5 KB") == 1536
        assert parse_size("42B") == 42
        with pytest.raises(ValueError):
            parse_size("ten megabytes")


class TestPairKey:
    """Test pair keys"""

    def test_str_and_parse(self):
        pair = PairKey("37i9dQZF1DXcBWIGoYBM5M", "42")
        assert str(pair) == "37i9dQZF1DXcBWIGoYBM5M:42"
        assert PairKey.parse(str(pair)) == pair

    @pytest.mark.parametrize("value", ["no-separator", ":42", "playlist:", " : "])
    def test_parse_invalid(self, value):
        with pytest.raises(ValueError):
            PairKey.parse(value)

    def test_hashable(self):
        assert len({PairKey("a", "1"), PairKey("a", "1"), PairKey("a", "2")}) == 2


class TestOutcomeMessage:
    """Test outcome log lines"""

    def test_success(self):
        outcome = ReconcileOutcome(
            playlist_id="pl1",
            success=True,
            added_count=2,
            removed_duplicate_count=1,
            already_present_count=3,
            skipped_invalid_count=0,
            final_track_count=9,
        )
        message = format_outcome_message("pl1:42", outcome)
        assert "pl1:42" in message
        assert "added" in message
        assert "9" in message

    def test_failure(self):
        outcome = ReconcileOutcome(
            playlist_id="pl1",
            success=False,
            error="No valid track IDs provided",
            error_code="NoValidTracks",
        )
        message = format_outcome_message("pl1:42", outcome)
        assert "No valid track IDs provided" in message
        assert "NoValidTracks" in message
