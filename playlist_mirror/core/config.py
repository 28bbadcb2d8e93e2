"""
Configuration management for playlist-mirror.

This module handles loading, validating, and providing access to the
application configuration stored in config.yaml.

The configuration file contains:
    - Spotify API credentials and OAuth settings
    - Path of the Messages database the links are read from
    - Path of the mirror database (schedules, watermarks, playlist cache)
    - Sync engine tuning (poll interval, Spotify batch sizes)
    - Logging preferences

Sensitive values can instead be provided through environment variables
(or a .env file in the working directory). Environment variables take
precedence over the file:

    SPOTIFY_CLIENT_ID, SPOTIFY_CLIENT_SECRET, SPOTIFY_REDIRECT_URI,
    IMESSAGE_DB_PATH, PLAYLIST_MIRROR_DB_PATH

Example config.yaml:
    spotify:
      client_id: "your_client_id_here"
      client_secret: "your_client_secret_here"
      redirect_uri: "http://127.0.0.1:8888/callback"

    messages:
      database_path: "~/Library/Messages/chat.db"

    storage:
      database_path: "~/.playlist-mirror/mirror.db"

    sync:
      poll_interval: 60

    logging:
      level: "INFO"
      file: "~/.playlist-mirror/logs/playlist-mirror.log"
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml
from dotenv import find_dotenv, load_dotenv

from playlist_mirror.core.exceptions import ConfigError


# Default configuration file name (looked up in the current working directory)
CONFIG_FILENAME = "config.yaml"

DEFAULT_CONFIG_DIRECTORY = "~/.playlist-mirror"
DEFAULT_REDIRECT_URI = "http://127.0.0.1:8888/callback"
DEFAULT_MESSAGES_DB = "~/Library/Messages/chat.db"

# Environment variable -> (section, field)
ENV_OVERRIDES = {
    "SPOTIFY_CLIENT_ID": ("spotify", "client_id"),
    "SPOTIFY_CLIENT_SECRET": ("spotify", "client_secret"),
    "SPOTIFY_REDIRECT_URI": ("spotify", "redirect_uri"),
    "IMESSAGE_DB_PATH": ("messages", "database_path"),
    "PLAYLIST_MIRROR_DB_PATH": ("storage", "database_path"),
}


@dataclass(frozen=True)
class SpotifyConfig:
    """
    Spotify API credentials and OAuth settings.

    These credentials are obtained from the Spotify Developer Dashboard:
    https://developer.spotify.com/dashboard

    Attributes:
        client_id: The Spotify application client ID.
        client_secret: The Spotify application client secret.
        redirect_uri: OAuth redirect URI registered for the application.
        cache_path: File where spotipy caches the access/refresh token.
    """
    client_id: str
    client_secret: str
    redirect_uri: str
    cache_path: Path


@dataclass(frozen=True)
class MessagesConfig:
    """
    Message store configuration.

    Attributes:
        database_path: Path to the macOS Messages database (chat.db).
                       Opened read-only.
    """
    database_path: Path


@dataclass(frozen=True)
class StorageConfig:
    """
    Mirror database configuration.

    Attributes:
        database_path: SQLite file holding schedules, polling watermarks
                       and the playlist track-count cache.
    """
    database_path: Path


@dataclass(frozen=True)
class SyncConfig:
    """
    Sync engine settings.

    Attributes:
        poll_interval: Seconds between two ticks of a real-time pair. Default: 60.
        add_batch_size: Max tracks per add call. Default: 50.
        remove_batch_size: Max positions per removal call. Default: 100.
        page_size: Tracks per paginated playlist read. Default: 100.
        track_id_length: Length of a valid Spotify track ID. Default: 22.
    """
    poll_interval: int = 60
    add_batch_size: int = 50
    remove_batch_size: int = 100
    page_size: int = 100
    track_id_length: int = 22


@dataclass(frozen=True)
class LoggingConfig:
    """
    Logging configuration.

    Attributes:
        level: Console log level name.
        file: Optional log file path (rotated). None disables file logging.
        max_size: Max size before rotation, e.g. "10MB".
        backup_count: Number of rotated files to keep.
        colored_output: Color level names on the console.
    """
    level: str = "INFO"
    file: Path | None = None
    max_size: str = "10MB"
    backup_count: int = 3
    colored_output: bool = True


@dataclass(frozen=True)
class Config:
    """
    Complete application configuration.

    This is the main configuration object that aggregates all configuration
    sections. It is created by load_config() and should be treated as
    immutable (frozen dataclass).

    Example:
        config = load_config()
        print(f"Polling every {config.sync.poll_interval}s")
    """
    spotify: SpotifyConfig
    messages: MessagesConfig
    storage: StorageConfig
    sync: SyncConfig
    logging: LoggingConfig


def load_config(config_path: Path | None = None) -> Config:
    """
    Load and validate configuration from config.yaml and the environment.

    Args:
        config_path: Optional explicit path to config file.
                     If None, looks for config.yaml in current working directory.
                     A missing default file is allowed when every required
                     value is supplied through environment variables.

    Returns:
        Config: A frozen dataclass containing all configuration values.

    Raises:
        ConfigError: If an explicit config file is not found, has invalid YAML
                     syntax, is missing required fields, or contains invalid values.

    Behavior:
        1. Load .env from the working directory (if present)
        2. Read and parse YAML content
        3. Apply environment variable overrides
        4. Validate and build each section
        5. Create and return frozen Config object
    """
    load_dotenv(find_dotenv(usecwd=True))

    explicit = config_path is not None
    if config_path is None:
        config_path = Path.cwd() / CONFIG_FILENAME

    raw_config: dict[str, Any] = {}
    if config_path.exists():
        raw_config = _read_yaml(config_path)
    elif explicit:
        raise ConfigError(
            f"Configuration file not found: {config_path}",
            details={"file_path": str(config_path)}
        )

    _apply_environment(raw_config)

    return Config(
        spotify=_parse_spotify_config(_section(raw_config, "spotify")),
        messages=_parse_messages_config(_section(raw_config, "messages")),
        storage=_parse_storage_config(_section(raw_config, "storage")),
        sync=_parse_sync_config(_section(raw_config, "sync")),
        logging=_parse_logging_config(_section(raw_config, "logging")),
    )


def _read_yaml(config_path: Path) -> dict[str, Any]:
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            raw_config = yaml.safe_load(f.read())
    except IOError as e:
        raise ConfigError(
            f"Failed to read configuration file: {e}",
            details={"file_path": str(config_path), "original_error": str(e)}
        ) from e
    except yaml.YAMLError as e:
        raise ConfigError(
            f"Invalid YAML syntax in configuration file: {e}",
            details={"file_path": str(config_path), "original_error": str(e)}
        ) from e

    if raw_config is None:
        return {}
    if not isinstance(raw_config, dict):
        raise ConfigError(
            "Configuration file must contain a YAML dictionary",
            details={"file_path": str(config_path)}
        )
    return raw_config


def _apply_environment(raw_config: dict[str, Any]) -> None:
    for env_var, (section, key) in ENV_OVERRIDES.items():
        value = os.getenv(env_var)
        if value:
            section_data = raw_config.get(section)
            if not isinstance(section_data, dict):
                section_data = {}
                raw_config[section] = section_data
            section_data[key] = value


def _section(raw_config: dict[str, Any], name: str) -> dict[str, Any]:
    section = raw_config.get(name)
    if section is None:
        return {}
    if not isinstance(section, dict):
        raise ConfigError(
            f"Section '{name}' must be a dictionary",
            details={"section": name}
        )
    return section


def _expand(value: str) -> Path:
    return Path(value.strip()).expanduser().resolve()


def _require_string(section: dict[str, Any], field_name: str, label: str) -> str:
    value = section.get(field_name, "")
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(
            f"'{label}' must be a non-empty string",
            details={"field": label}
        )
    return value.strip()


def _positive_int(section: dict[str, Any], field_name: str, label: str, default: int) -> int:
    value = section.get(field_name)
    if value is None:
        return default
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ConfigError(
            f"'{label}' must be a positive integer",
            details={"field": label, "value": value}
        )
    return value


def _parse_spotify_config(section: dict[str, Any]) -> SpotifyConfig:
    """
    Parse and validate the Spotify configuration section.

    Raises:
        ConfigError: If client_id or client_secret is missing or empty.
    """
    client_id = _require_string(section, "client_id", "spotify.client_id")
    client_secret = _require_string(section, "client_secret", "spotify.client_secret")

    redirect_uri = section.get("redirect_uri") or DEFAULT_REDIRECT_URI
    if not isinstance(redirect_uri, str):
        raise ConfigError(
            "'spotify.redirect_uri' must be a string",
            details={"field": "spotify.redirect_uri"}
        )

    cache_raw = section.get("cache_path") or f"{DEFAULT_CONFIG_DIRECTORY}/spotify_token.json"
    if not isinstance(cache_raw, str):
        raise ConfigError(
            "'spotify.cache_path' must be a string path",
            details={"field": "spotify.cache_path"}
        )

    return SpotifyConfig(
        client_id=client_id,
        client_secret=client_secret,
        redirect_uri=redirect_uri.strip(),
        cache_path=_expand(cache_raw),
    )


def _parse_messages_config(section: dict[str, Any]) -> MessagesConfig:
    raw_path = section.get("database_path") or DEFAULT_MESSAGES_DB
    if not isinstance(raw_path, str):
        raise ConfigError(
            "'messages.database_path' must be a string path",
            details={"field": "messages.database_path"}
        )
    return MessagesConfig(database_path=_expand(raw_path))


def _parse_storage_config(section: dict[str, Any]) -> StorageConfig:
    raw_path = section.get("database_path") or f"{DEFAULT_CONFIG_DIRECTORY}/mirror.db"
    if not isinstance(raw_path, str):
        raise ConfigError(
            "'storage.database_path' must be a string path",
            details={"field": "storage.database_path"}
        )
    return StorageConfig(database_path=_expand(raw_path))


def _parse_sync_config(section: dict[str, Any]) -> SyncConfig:
    """
    Parse the sync section, applying defaults for missing fields.

    Batch sizes are capped by what the Spotify Web API accepts per request
    (100 items for both adding and removing).
    """
    defaults = SyncConfig()
    config = SyncConfig(
        poll_interval=_positive_int(section, "poll_interval", "sync.poll_interval", defaults.poll_interval),
        add_batch_size=_positive_int(section, "add_batch_size", "sync.add_batch_size", defaults.add_batch_size),
        remove_batch_size=_positive_int(
            section, "remove_batch_size", "sync.remove_batch_size", defaults.remove_batch_size
        ),
        page_size=_positive_int(section, "page_size", "sync.page_size", defaults.page_size),
        track_id_length=_positive_int(section, "track_id_length", "sync.track_id_length", defaults.track_id_length),
    )

    for label, value in (
        ("sync.add_batch_size", config.add_batch_size),
        ("sync.remove_batch_size", config.remove_batch_size),
        ("sync.page_size", config.page_size),
    ):
        if value > 100:
            raise ConfigError(
                f"'{label}' cannot exceed 100 (Spotify API limit)",
                details={"field": label, "value": value}
            )
    return config


def _parse_logging_config(section: dict[str, Any]) -> LoggingConfig:
    level = section.get("level", "INFO")
    if not isinstance(level, str) or level.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
        raise ConfigError(
            f"Invalid logging level: {level}",
            details={"field": "logging.level", "value": level}
        )

    raw_file = section.get("file")
    if raw_file is not None and (not isinstance(raw_file, str) or not raw_file.strip()):
        raise ConfigError(
            "'logging.file' must be a non-empty string path or null",
            details={"field": "logging.file"}
        )

    max_size = section.get("max_size", "10MB")
    if not isinstance(max_size, str):
        raise ConfigError(
            "'logging.max_size' must be a size string like '10MB'",
            details={"field": "logging.max_size", "value": max_size}
        )

    return LoggingConfig(
        level=level.upper(),
        file=_expand(raw_file) if raw_file else None,
        max_size=max_size,
        backup_count=_positive_int(section, "backup_count", "logging.backup_count", 3),
        colored_output=bool(section.get("colored_output", True)),
    )
