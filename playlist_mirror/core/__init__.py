"""
Core module for playlist-mirror.

This module provides the foundational components used throughout the application:
    - exceptions: Custom exception classes with facade error codes
    - models: Pair keys and persisted records
    - config: Configuration loading and validation
    - database: Thread-safe SQLite store for pairs and playlist metadata
    - logger: Colored console and rotating file logging

Usage:
    from playlist_mirror.core import (
        Config, load_config,
        Database, PairKey,
        setup_logging, get_logger,
        PlaylistMirrorError, ConfigError
    )
"""

from playlist_mirror.core.exceptions import (
    AlreadyActiveError,
    ConfigError,
    InvalidTimeFormatError,
    NoValidTracksError,
    NotActiveError,
    PersistenceError,
    PlaylistMirrorError,
    PlaylistServiceError,
    ResolverError,
    ServiceNotReadyError,
)
from playlist_mirror.core.models import (
    PairKey,
    PlaylistSummary,
    PollingRecord,
    ScheduleRecord,
    utc_now,
)
from playlist_mirror.core.config import (
    Config,
    LoggingConfig,
    MessagesConfig,
    SpotifyConfig,
    StorageConfig,
    SyncConfig,
    load_config,
)
from playlist_mirror.core.database import Database
from playlist_mirror.core.logger import (
    format_outcome_message,
    get_logger,
    setup_logging,
    shutdown_logging,
)

__all__ = [
    # Config
    "Config",
    "SpotifyConfig",
    "MessagesConfig",
    "StorageConfig",
    "SyncConfig",
    "LoggingConfig",
    "load_config",
    # Database
    "Database",
    # Models
    "PairKey",
    "ScheduleRecord",
    "PollingRecord",
    "PlaylistSummary",
    "utc_now",
    # Exceptions
    "PlaylistMirrorError",
    "ConfigError",
    "InvalidTimeFormatError",
    "AlreadyActiveError",
    "NotActiveError",
    "NoValidTracksError",
    "PlaylistServiceError",
    "ResolverError",
    "PersistenceError",
    "ServiceNotReadyError",
    # Logger
    "setup_logging",
    "get_logger",
    "format_outcome_message",
    "shutdown_logging",
]
