"""
Exception classes for playlist-mirror.

This module defines all custom exceptions used throughout the application.
Each exception carries a human-readable message, an optional details
dictionary, and a short ``code`` that the caller-facing facade returns
alongside the message.

Exception Hierarchy:
    PlaylistMirrorError (base)
        ConfigError - Configuration file issues
        InvalidTimeFormatError - Schedule trigger time is not HH:mm
        AlreadyActiveError - Polling already running for a pair
        NotActiveError - No polling running for a pair
        NoValidTracksError - No candidate had a valid track ID
        PlaylistServiceError - Spotify API issues (network/auth/rate limit)
        ResolverError - Message store read failures
        PersistenceError - Mirror database issues
        ServiceNotReadyError - Request arrived before startup replay finished

Severity:
    Validation errors (InvalidTimeFormatError, NoValidTracksError) are
    returned to the caller and never retried. PlaylistServiceError,
    ResolverError and PersistenceError raised inside a scheduled fire or a
    poll tick are logged at the execution boundary and the pair stays active.
    AlreadyActiveError and NotActiveError are control-flow signals for
    idempotent start/stop.
"""


class PlaylistMirrorError(Exception):
    """
    Base exception for all playlist-mirror errors.

    All custom exceptions in this project inherit from this class,
    allowing callers to catch all playlist-mirror errors with a single
    except clause if desired.

    Attributes:
        message: Human-readable error description.
        details: Optional dictionary with additional context (e.g., playlist ID, pair key).
        code: Short taxonomy name returned by the facade in error responses.

    Example:
        try:
            # some operation
        except PlaylistMirrorError as e:
            logger.error(f"Operation failed: {e.message}")
            if e.details:
                logger.debug(f"Details: {e.details}")
    """

    code = "PlaylistMirrorError"

    def __init__(self, message: str, details: dict | None = None) -> None:
        """
        Initialize the base exception.

        Args:
            message: Human-readable error description that will be shown to the caller.
            details: Optional dictionary containing additional context about the error.
                     Common keys include:
                     - 'playlist_id': Spotify playlist ID involved in the error
                     - 'pair': String form of the pair key
                     - 'original_error': The underlying exception if wrapping another error
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        """Return the error message for display."""
        return self.message


class ConfigError(PlaylistMirrorError):
    """
    Raised when there's an issue with the configuration file.

    This is a CRITICAL error that should stop program execution.

    Common causes:
        - config.yaml not found
        - config.yaml has invalid YAML syntax
        - Required fields missing (client_id, client_secret)
        - Invalid field values (e.g., non-positive poll interval)
    """
    code = "ConfigError"


class InvalidTimeFormatError(PlaylistMirrorError):
    """
    Raised when a schedule trigger time is not a 24-hour HH:mm string.

    Example:
        raise InvalidTimeFormatError(
            "Invalid time format. Please use HH:mm format (e.g., 13:30)",
            details={'trigger_time': '25:00'}
        )
    """
    code = "InvalidTimeFormat"


class AlreadyActiveError(PlaylistMirrorError):
    """Raised when polling is started for a pair that already has a live handle."""
    code = "AlreadyActive"


class NotActiveError(PlaylistMirrorError):
    """Raised when polling is stopped for a pair without a live handle."""
    code = "NotActive"


class NoValidTracksError(PlaylistMirrorError):
    """
    Raised when none of the submitted candidates is a valid track ID.

    This is a NON-CRITICAL error. The reconciler reports it as a failed
    outcome instead of raising, so poll loops keep running; playlist
    creation raises it because there is nothing to create a playlist from.
    """
    code = "NoValidTracks"


class PlaylistServiceError(PlaylistMirrorError):
    """
    Raised when there's an issue with the Spotify API.

    Can be CRITICAL (auth failure) or NON-CRITICAL (a single failed call
    inside a poll tick, retried on the next natural trigger).

    Common causes:
        - Invalid or expired credentials (CRITICAL)
        - Rate limiting (may be recoverable with retry)
        - Playlist not found or not owned by the user
        - Stale snapshot_id on a positional removal
        - Network connectivity issues

    Attributes:
        is_auth_error: True if this is an authentication error (CRITICAL).
        is_rate_limit: True if this is a rate limit error (may retry).

    Example:
        raise PlaylistServiceError(
            "Failed to add tracks: playlist not found",
            details={'playlist_id': playlist_id, 'http_status': 404}
        )
    """

    code = "RemoteServiceError"

    def __init__(
        self,
        message: str,
        details: dict | None = None,
        is_auth_error: bool = False,
        is_rate_limit: bool = False
    ) -> None:
        """
        Initialize Spotify error with additional flags.

        Args:
            message: Human-readable error description.
            details: Optional dictionary with additional context.
            is_auth_error: Set to True if this is an authentication failure.
            is_rate_limit: Set to True if this is a rate limit error.
        """
        super().__init__(message, details)
        self.is_auth_error = is_auth_error
        self.is_rate_limit = is_rate_limit


class ResolverError(PlaylistMirrorError):
    """
    Raised when the message store cannot be read.

    Common causes:
        - chat.db path wrong or not readable (Full Disk Access on macOS)
        - Database locked or schema unexpected
    """
    code = "ResolverError"


class PersistenceError(PlaylistMirrorError):
    """
    Raised when there's an issue with the mirror database.

    Common causes:
        - Parent directory missing or not writable
        - Database file corrupted
        - Schema version mismatch
    """
    code = "PersistenceError"


class ServiceNotReadyError(PlaylistMirrorError):
    """Raised when a registration request arrives before persisted pairs are restored."""
    code = "ServiceNotReady"
