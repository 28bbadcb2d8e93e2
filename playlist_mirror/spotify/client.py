"""
Spotify playlist service for playlist-mirror.

This module wraps the spotipy library behind the small playlist API the
sync engine uses: paginated reads, appends, positional removals, playlist
creation and listing. Every spotipy or network failure is translated
into PlaylistServiceError so callers only deal with one exception type.

Authentication:
    Modifying playlists requires the user OAuth flow. connect() builds a
    SpotifyOAuth manager that caches the token in config.spotify.cache_path;
    the first run opens a browser for consent.

Usage:
    from playlist_mirror.spotify.client import SpotifyPlaylistService

    service = SpotifyPlaylistService.connect(config.spotify)
    page = service.get_tracks(playlist_id, offset=0, limit=100)
    snapshot = service.add_tracks(playlist_id, ["4cOdK2wGLETKBW3PvgPWqT"])
"""

from collections import defaultdict
from typing import Any, Callable, Protocol, TypeVar

import requests
import spotipy
from spotipy.oauth2 import SpotifyOAuth

from playlist_mirror.core.config import SpotifyConfig
from playlist_mirror.core.exceptions import PlaylistServiceError
from playlist_mirror.core.logger import get_logger
from playlist_mirror.spotify.models import PlaylistInfo, TrackPage, TrackSlot, track_uri


logger = get_logger(__name__)

T = TypeVar("T")

OAUTH_SCOPES = (
    "playlist-modify-public",
    "playlist-modify-private",
    "playlist-read-private",
    "playlist-read-collaborative",
    "user-read-private",
    "user-read-email",
)

# Web API maximums per request
MAX_ITEMS_PER_REQUEST = 100
MAX_PLAYLISTS_PER_PAGE = 50


class PlaylistService(Protocol):
    """
    Remote playlist operations used by the reconciler and the facade.

    SpotifyPlaylistService is the production implementation; tests use an
    in-memory fake with the same methods.
    """

    def create_playlist(self, name: str, description: str, public: bool = True) -> PlaylistInfo: ...

    def list_playlists(self) -> list[PlaylistInfo]: ...

    def get_playlist(self, playlist_id: str) -> PlaylistInfo: ...

    def get_tracks(self, playlist_id: str, offset: int, limit: int) -> TrackPage: ...

    def add_tracks(self, playlist_id: str, track_ids: list[str]) -> str | None: ...

    def remove_tracks_by_position(
        self,
        playlist_id: str,
        slots: list[TrackSlot],
        snapshot_id: str | None
    ) -> str | None: ...


class SpotifyPlaylistService:
    """
    Spotify Web API implementation of PlaylistService.

    Attributes:
        _spotify: The underlying spotipy.Spotify instance.
        _user_id: Cached ID of the authenticated user (needed to create playlists).

    Thread Safety:
        spotipy keeps one requests session per client; the sync engine
        serializes mutations of a playlist with its own per-playlist lock.

    Rate Limiting:
        spotipy retries 429 responses itself. If retries are exhausted the
        error surfaces as PlaylistServiceError with is_rate_limit=True and
        the next natural trigger retries.
    """

    def __init__(self, spotify_instance: spotipy.Spotify) -> None:
        """
        Args:
            spotify_instance: Configured spotipy.Spotify instance with a user
                              auth manager (or a mock in tests).
        """
        self._spotify = spotify_instance
        self._user_id: str | None = None

    @classmethod
    def connect(cls, config: SpotifyConfig, open_browser: bool = True) -> "SpotifyPlaylistService":
        """
        Authenticate with Spotify and return a ready service.

        Args:
            config: Spotify section of the application config.
            open_browser: Open the consent page automatically on first run.

        Returns:
            A SpotifyPlaylistService bound to the authenticated user.

        Raises:
            PlaylistServiceError: With is_auth_error=True if the OAuth flow
                                  or the verification call fails.

        Behavior:
            1. Ensure the token cache directory exists
            2. Create a SpotifyOAuth manager with the playlist scopes
            3. Verify the connection by fetching the current user
        """
        try:
            config.cache_path.parent.mkdir(parents=True, exist_ok=True)
            auth_manager = SpotifyOAuth(
                client_id=config.client_id,
                client_secret=config.client_secret,
                redirect_uri=config.redirect_uri,
                scope=" ".join(OAUTH_SCOPES),
                cache_path=str(config.cache_path),
                open_browser=open_browser
            )
            service = cls(spotipy.Spotify(auth_manager=auth_manager))
            user_id = service.current_user_id()
        except spotipy.SpotifyException as e:
            raise PlaylistServiceError(
                f"Spotify authentication failed: {e}",
                details={"original_error": str(e)},
                is_auth_error=True
            ) from e
        except PlaylistServiceError as e:
            raise PlaylistServiceError(
                f"Spotify authentication failed: {e.message}",
                details=e.details,
                is_auth_error=True
            ) from e
        except OSError as e:
            raise PlaylistServiceError(
                f"Failed to initialize Spotify client: {e}",
                details={"original_error": str(e)},
                is_auth_error=True
            ) from e

        logger.info(f"Connected to Spotify as {user_id}")
        return service

    def _call(self, action: str, func: Callable[..., T], *args: Any, details: dict | None = None, **kwargs: Any) -> T:
        """
        Invoke a spotipy method, translating failures into PlaylistServiceError.

        Args:
            action: Short description used in the error message ("add tracks").
            func: Bound spotipy method.
            details: Context copied into the raised error.
        """
        details = dict(details or {})
        try:
            return func(*args, **kwargs)
        except spotipy.SpotifyException as e:
            details.update({"http_status": e.http_status, "original_error": str(e)})
            if e.http_status == 429:
                raise PlaylistServiceError(
                    f"Rate limited while trying to {action}",
                    details=details,
                    is_rate_limit=True
                ) from e
            raise PlaylistServiceError(
                f"Failed to {action}: {e.msg}",
                details=details,
                is_auth_error=e.http_status == 401
            ) from e
        except requests.exceptions.RequestException as e:
            details["original_error"] = str(e)
            raise PlaylistServiceError(
                f"Network error while trying to {action}: {e}",
                details=details
            ) from e

    # =========================================================================
    # User and playlist metadata
    # =========================================================================

    def current_user_id(self) -> str:
        """Return (and cache) the Spotify ID of the authenticated user."""
        if self._user_id is None:
            user = self._call("fetch current user", self._spotify.current_user)
            if not user or "id" not in user:
                raise PlaylistServiceError("Spotify returned no current user")
            self._user_id = user["id"]
        return self._user_id

    def get_playlist(self, playlist_id: str) -> PlaylistInfo:
        """
        Fetch playlist metadata, including the authoritative track total.

        Raises:
            PlaylistServiceError: If the playlist does not exist or the call fails.
        """
        data = self._call(
            "fetch playlist",
            self._spotify.playlist,
            playlist_id,
            fields="id,name,description,snapshot_id,tracks(total),external_urls",
            details={"playlist_id": playlist_id}
        )
        if not data:
            raise PlaylistServiceError(
                f"Playlist not found: {playlist_id}",
                details={"playlist_id": playlist_id}
            )
        return PlaylistInfo.from_spotify_api(data)

    def list_playlists(self) -> list[PlaylistInfo]:
        """
        List every playlist of the authenticated user (owned and followed).

        Pagination is handled internally, 50 playlists per request.
        """
        playlists: list[PlaylistInfo] = []
        offset = 0
        while True:
            page = self._call(
                "list playlists",
                self._spotify.current_user_playlists,
                limit=MAX_PLAYLISTS_PER_PAGE,
                offset=offset
            )
            items = (page or {}).get("items") or []
            playlists.extend(PlaylistInfo.from_spotify_api(item) for item in items if item)
            if not items or not page.get("next"):
                break
            offset += len(items)
        return playlists

    def create_playlist(self, name: str, description: str, public: bool = True) -> PlaylistInfo:
        """
        Create an empty playlist owned by the authenticated user.

        Returns:
            PlaylistInfo of the new playlist (track_count 0).
        """
        data = self._call(
            "create playlist",
            self._spotify.user_playlist_create,
            self.current_user_id(),
            name,
            public=public,
            description=description,
            details={"name": name}
        )
        logger.info(f"Created playlist '{name}' ({data['id']})")
        return PlaylistInfo.from_spotify_api(data)

    # =========================================================================
    # Playlist contents
    # =========================================================================

    def get_tracks(self, playlist_id: str, offset: int, limit: int) -> TrackPage:
        """
        Read one page of playlist contents.

        Args:
            playlist_id: Spotify playlist ID.
            offset: Absolute position of the first item to return.
            limit: Page size (max 100).

        Returns:
            TrackPage with one entry per position. The snapshot_id is only
            fetched for the first page, which is where a scan starts.
        """
        details = {"playlist_id": playlist_id, "offset": offset}
        snapshot_id = None
        if offset == 0:
            meta = self._call(
                "read playlist snapshot",
                self._spotify.playlist,
                playlist_id,
                fields="snapshot_id",
                details=details
            )
            snapshot_id = (meta or {}).get("snapshot_id")

        page = self._call(
            "read playlist tracks",
            self._spotify.playlist_items,
            playlist_id,
            fields="items(track(id,type)),total",
            limit=min(limit, MAX_ITEMS_PER_REQUEST),
            offset=offset,
            additional_types=("track",),
            details=details
        ) or {}

        items: list[str | None] = []
        for item in page.get("items") or []:
            track = (item or {}).get("track") or {}
            items.append(track.get("id") if track.get("type", "track") == "track" else None)

        return TrackPage(items=items, total=int(page.get("total") or 0), snapshot_id=snapshot_id)

    def add_tracks(self, playlist_id: str, track_ids: list[str]) -> str | None:
        """
        Append tracks to the end of a playlist in one request.

        Args:
            track_ids: At most 100 track IDs (the caller batches).

        Returns:
            The playlist's new snapshot_id.
        """
        if not track_ids:
            return None
        result = self._call(
            "add tracks",
            self._spotify.playlist_add_items,
            playlist_id,
            [track_uri(track_id) for track_id in track_ids],
            details={"playlist_id": playlist_id, "count": len(track_ids)}
        )
        return (result or {}).get("snapshot_id")

    def remove_tracks_by_position(
        self,
        playlist_id: str,
        slots: list[TrackSlot],
        snapshot_id: str | None
    ) -> str | None:
        """
        Remove specific occurrences of tracks, identified by position.

        Positions refer to the playlist as of snapshot_id. Slots of the same
        track are grouped into one entry with several positions, which is
        the shape the Web API expects.

        Returns:
            The playlist's new snapshot_id.
        """
        if not slots:
            return snapshot_id

        positions_by_uri: dict[str, list[int]] = defaultdict(list)
        for slot in slots:
            positions_by_uri[track_uri(slot.track_id)].append(slot.position)
        items = [
            {"uri": uri, "positions": sorted(positions, reverse=True)}
            for uri, positions in positions_by_uri.items()
        ]

        result = self._call(
            "remove duplicate tracks",
            self._spotify.playlist_remove_specific_occurrences_of_items,
            playlist_id,
            items,
            snapshot_id=snapshot_id,
            details={"playlist_id": playlist_id, "count": len(slots)}
        )
        return (result or {}).get("snapshot_id")
