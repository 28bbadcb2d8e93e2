"""
Spotify module for playlist-mirror.

Usage:
    from playlist_mirror.spotify import SpotifyPlaylistService

    service = SpotifyPlaylistService.connect(config.spotify)
    for playlist in service.list_playlists():
        print(playlist.name, playlist.track_count)
"""

from playlist_mirror.spotify.client import PlaylistService, SpotifyPlaylistService
from playlist_mirror.spotify.models import PlaylistInfo, TrackPage, TrackSlot, track_uri

__all__ = [
    "PlaylistService",
    "SpotifyPlaylistService",
    "PlaylistInfo",
    "TrackPage",
    "TrackSlot",
    "track_uri",
]
