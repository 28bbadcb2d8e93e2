"""
Data models for Spotify entities.

This module defines immutable dataclasses for the small slice of the
Spotify playlist API the sync engine needs: playlist metadata, one page
of playlist contents, and a positional reference to a track.

Design Decisions:
    - All dataclasses are frozen (immutable) to prevent accidental modification
    - Items without a track ID (local files, unavailable tracks) still occupy
      a position, so pages keep them as None
    - from_spotify_api() builders tolerate missing optional keys

Usage:
    from playlist_mirror.spotify.models import PlaylistInfo, TrackPage

    info = PlaylistInfo.from_spotify_api(spotify_client.playlist(playlist_id))
    print(info.track_count)
"""

from dataclasses import dataclass, field
from typing import Any


SPOTIFY_TRACK_URI_PREFIX = "spotify:track:"


def track_uri(track_id: str) -> str:
    """Return the spotify:track:<id> URI for a track ID."""
    return f"{SPOTIFY_TRACK_URI_PREFIX}{track_id}"


@dataclass(frozen=True)
class PlaylistInfo:
    """
    Immutable representation of a Spotify playlist's metadata.

    Attributes:
        spotify_id: Spotify playlist ID.
                    Example: "37i9dQZF1DXcBWIGoYBM5M"

        name: Playlist name as shown in Spotify.

        description: Playlist description (may be empty).

        track_count: Total number of items in the playlist, as reported
                     by Spotify in tracks.total.

        snapshot_id: Version token of the playlist contents. Positional
                     removals are only valid against the snapshot they
                     were computed from.

        spotify_url: Web URL of the playlist, if Spotify returned one.
    """
    spotify_id: str
    name: str
    description: str = ""
    track_count: int = 0
    snapshot_id: str | None = None
    spotify_url: str | None = None

    @classmethod
    def from_spotify_api(cls, data: dict[str, Any]) -> "PlaylistInfo":
        """
        Build a PlaylistInfo from a playlist object of the Web API.

        Works for full playlist objects as well as the simplified objects
        returned by current_user_playlists().
        """
        tracks = data.get("tracks") or {}
        external_urls = data.get("external_urls") or {}
        return cls(
            spotify_id=data["id"],
            name=data.get("name") or "",
            description=data.get("description") or "",
            track_count=int(tracks.get("total") or 0),
            snapshot_id=data.get("snapshot_id"),
            spotify_url=external_urls.get("spotify"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.spotify_id,
            "name": self.name,
            "description": self.description,
            "track_count": self.track_count,
            "url": self.spotify_url,
        }


@dataclass(frozen=True)
class TrackPage:
    """
    One page of playlist contents.

    Attributes:
        items: Track IDs in playlist order. None marks an item that has no
               Spotify track ID but still occupies a position.
        total: Total number of items in the playlist at read time.
        snapshot_id: Snapshot the page was read from. Only populated for
                     the first page (offset 0).
    """
    items: list[str | None] = field(default_factory=list)
    total: int = 0
    snapshot_id: str | None = None


@dataclass(frozen=True)
class TrackSlot:
    """A single occurrence of a track at an absolute playlist position."""
    track_id: str
    position: int
