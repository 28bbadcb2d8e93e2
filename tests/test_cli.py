# tests/test_cli.py
"""Test the command-line interface"""

from datetime import datetime, timezone
from unittest.mock import ANY, patch

import pytest
from click.testing import CliRunner

from fakes import FakePlaylistService, FakeResolver, tid
from playlist_mirror.cli import cli
from playlist_mirror.core.config import (
    Config,
    LoggingConfig,
    MessagesConfig,
    SpotifyConfig,
    StorageConfig,
    SyncConfig,
)
from playlist_mirror.core.database import Database
from playlist_mirror.core.exceptions import ConfigError, PlaylistServiceError
from playlist_mirror.core.models import PairKey
from playlist_mirror.service import SyncService


PLAYLIST = "37i9dQZF1DXcBWIGoYBM5M"


@pytest.fixture
def config(temp_dir):
    return Config(
        spotify=SpotifyConfig("id", "secret", "http://127.0.0.1:8888/callback", temp_dir / "token.json"),
        messages=MessagesConfig(temp_dir / "chat.db"),
        storage=StorageConfig(temp_dir / "state" / "mirror.db"),
        sync=SyncConfig(),
        logging=LoggingConfig(),
    )


@pytest.fixture
def playlist_service():
    service = FakePlaylistService()
    service.add_playlist(PLAYLIST, [tid("a")], name="Mix")
    return service


@pytest.fixture
def resolver():
    resolver = FakeResolver()
    resolver.add_message("42", tid("b"), datetime(2024, 5, 1, tzinfo=timezone.utc))
    return resolver


@pytest.fixture
def invoke(config, playlist_service, resolver):
    """Run a CLI command with Spotify, chat.db and logging replaced"""

    def _invoke(*args):
        with patch("playlist_mirror.cli.load_config", return_value=config), \
                patch("playlist_mirror.cli.setup_logging"), \
                patch("playlist_mirror.cli.shutdown_logging"), \
                patch("playlist_mirror.cli.SpotifyPlaylistService.connect", return_value=playlist_service), \
                patch("playlist_mirror.cli.IMessageTrackResolver", return_value=resolver), \
                patch("playlist_mirror.cli._wait_for_interrupt"):
            return CliRunner().invoke(cli, list(args), obj={})

    return _invoke


class TestCommands:
    """Test each command"""

    def test_help(self):
        result = CliRunner().invoke(cli, ["--help"])
        assert result.exit_code == 0
        assert "reconcile" in result.output

    def test_reconcile_track_ids(self, invoke, playlist_service):
        result = invoke("reconcile", PLAYLIST, tid("a"), tid("c"), "bad")

        assert result.exit_code == 0, result.output
        assert "Added 1" in result.output
        assert "1 invalid" in result.output
        assert playlist_service.playlists[PLAYLIST] == [tid("a"), tid("c")]

    def test_reconcile_conversation(self, invoke, playlist_service):
        result = invoke("reconcile", PLAYLIST, "--conversation", "42")

        assert result.exit_code == 0, result.output
        assert playlist_service.playlists[PLAYLIST] == [tid("a"), tid("b")]

    def test_reconcile_without_tracks(self, invoke):
        result = invoke("reconcile", PLAYLIST)
        assert result.exit_code == 2
        assert "TRACK_IDS" in result.output

    def test_reconcile_no_valid_tracks(self, invoke):
        result = invoke("reconcile", PLAYLIST, "bad")
        assert result.exit_code == 4
        assert "NoValidTracks" in result.output

    def test_create(self, invoke, playlist_service):
        result = invoke("create", "Road trip", "--conversation", "42")

        assert result.exit_code == 0, result.output
        assert "Created 'Road trip'" in result.output
        assert "with 1 tracks" in result.output

    def test_playlists(self, invoke):
        result = invoke("playlists")
        assert result.exit_code == 0, result.output
        assert f"{PLAYLIST}  Mix  (1 tracks)" in result.output

    def test_conversations(self, invoke):
        result = invoke("conversations")
        assert result.exit_code == 0, result.output
        assert "42  chat42" in result.output

    def test_run_registers_pairs(self, invoke, config):
        result = invoke("run", "--schedule", f"{PLAYLIST}:42@13:30", "--poll", f"{PLAYLIST}:7")

        assert result.exit_code == 0, result.output
        assert "Schedule created" in result.output
        assert f"Polling {PLAYLIST}:7" in result.output

        database = Database(config.storage.database_path)
        try:
            assert database.get_schedule(PairKey(PLAYLIST, "42")).trigger_time == "13:30"
            assert database.get_polling(PairKey(PLAYLIST, "7")).active
        finally:
            database.close()

    def test_run_waits_for_running_fires(self, invoke):
        """The scheduler is drained before the database closes"""
        original = SyncService.shutdown
        with patch.object(SyncService, "shutdown", autospec=True, side_effect=original) as shutdown:
            result = invoke("run")

        assert result.exit_code == 0, result.output
        shutdown.assert_called_once_with(ANY, wait=True)

    def test_run_invalid_time(self, invoke):
        result = invoke("run", "--schedule", f"{PLAYLIST}:42@25:00")
        assert result.exit_code == 4
        assert "InvalidTimeFormat" in result.output

    def test_run_bad_pair(self, invoke):
        result = invoke("run", "--poll", "no-separator")
        assert result.exit_code == 2

    def test_status(self, invoke, config):
        invoke("run", "--schedule", f"{PLAYLIST}:42@13:30")

        result = invoke("status")

        assert result.exit_code == 0, result.output
        assert "Schedules (1):" in result.output
        assert f"{PLAYLIST}:42  daily at 13:30  (last run: never)" in result.output
        assert "Real-time polling (0):" in result.output


class TestExitCodes:
    """Test error handling"""

    def test_config_error(self):
        with patch("playlist_mirror.cli.load_config", side_effect=ConfigError("bad config")), \
                patch("playlist_mirror.cli.shutdown_logging"):
            result = CliRunner().invoke(cli, ["status"], obj={})

        assert result.exit_code == 1
        assert "Configuration error: bad config" in result.output

    def test_spotify_auth_error(self, config):
        error = PlaylistServiceError("Spotify authentication failed", is_auth_error=True)
        with patch("playlist_mirror.cli.load_config", return_value=config), \
                patch("playlist_mirror.cli.setup_logging"), \
                patch("playlist_mirror.cli.shutdown_logging"), \
                patch("playlist_mirror.cli.SpotifyPlaylistService.connect", side_effect=error):
            result = CliRunner().invoke(cli, ["playlists"], obj={})

        assert result.exit_code == 3
        assert "client_id" in result.output

    def test_interrupt(self):
        with patch("playlist_mirror.cli._load", side_effect=KeyboardInterrupt), \
                patch("playlist_mirror.cli.shutdown_logging"):
            result = CliRunner().invoke(cli, ["status"], obj={})
        assert result.exit_code == 130
