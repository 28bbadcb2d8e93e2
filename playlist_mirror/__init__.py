"""
playlist-mirror: Mirror Spotify links shared in iMessage conversations into playlists.

Each managed (playlist, conversation) pair runs on one of two timing policies:

    Daily schedule: once a day at HH:mm (local time), the whole conversation
        is read and the playlist is reconciled against every link in it.

    Real-time polling: every poll_interval seconds, only messages newer than
        the pair's watermark are read; the watermark advances after each
        reconciliation.

Reconciliation removes duplicate occurrences from the playlist and appends
the tracks it does not contain yet, in the order they were shared.

Modules:
    core/       - Configuration, database, logging, exceptions, models
    messages/   - Track link extraction from the Messages database
    spotify/    - Spotify playlist client
    sync/       - Registry, reconciler, schedule and polling runners
    service.py  - SyncService facade
    cli.py      - Command-line interface

Usage:
    Command Line:
        playlist-mirror conversations
        playlist-mirror run --schedule "PLAYLIST_ID:CHAT_ID@13:30"

    Python API:
        from playlist_mirror.core import load_config, Database
        from playlist_mirror.messages import IMessageTrackResolver
        from playlist_mirror.service import SyncService
        from playlist_mirror.spotify import SpotifyPlaylistService

        config = load_config()
        service = SyncService(
            SpotifyPlaylistService.connect(config.spotify),
            IMessageTrackResolver(config.messages.database_path),
            Database(config.storage.database_path),
            config.sync,
        )
        service.start()
        service.start_polling("37i9dQZF1DXcBWIGoYBM5M", "42")

Dependencies:
    - spotipy: Spotify API client
    - APScheduler: Daily and interval triggers
    - click / rich-click: CLI
    - pyyaml / python-dotenv: Configuration
    - colorama: Colored console logging
"""

__version__ = "0.1.0"
__author__ = "playlist-mirror"
__license__ = "MIT"
