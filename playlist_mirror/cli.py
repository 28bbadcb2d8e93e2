"""
Command-line interface for playlist-mirror.

This module implements the CLI using Click, with rich-click for the help
output colors.

Commands:
    playlist-mirror run                       Run the engine in the foreground
    playlist-mirror run --schedule P:C@13:30  ...and (re)schedule a pair daily
    playlist-mirror run --poll P:C            ...and start polling a pair
    playlist-mirror status                    Show persisted schedules and polled pairs
    playlist-mirror reconcile <playlist> ...  Sync a playlist once
    playlist-mirror create <name> ...         Create a playlist from links
    playlist-mirror playlists                 List your Spotify playlists
    playlist-mirror conversations             List conversations in chat.db

Pairs are written PLAYLIST_ID:CONVERSATION_ID, where CONVERSATION_ID is
the chat ID printed by the conversations command.

Usage:
    # Mirror a group chat into a playlist every day at 13:30, and keep
    # another one in sync in near real time
    playlist-mirror run --schedule "37i9dQZF1DXcBWIGoYBM5M:42@13:30" \\
                        --poll "5ABHKGoOzxkaa28ttQV9sE:7"

    # One-off sync of a whole conversation
    playlist-mirror reconcile 37i9dQZF1DXcBWIGoYBM5M --conversation 42

Configuration:
    The CLI reads config.yaml from the current directory (or --config),
    with secrets optionally taken from the environment / .env.

Exit Codes:
    1  configuration error or unexpected error
    2  mirror database error
    3  Spotify error
    4  any other playlist-mirror error
    130 interrupted
"""

import functools
import sys
import threading
from pathlib import Path
from typing import Any, Callable

import rich_click as click

# Configure rich-click for better help formatting
click.rich_click.USE_RICH_MARKUP = True
click.rich_click.SHOW_ARGUMENTS = True
click.rich_click.GROUP_ARGUMENTS_OPTIONS = True
click.rich_click.STYLE_ERRORS_SUGGESTION = "magenta italic"
click.rich_click.MAX_WIDTH = 100

from playlist_mirror import __version__
from playlist_mirror.core import (
    Config,
    ConfigError,
    Database,
    PairKey,
    PersistenceError,
    PlaylistMirrorError,
    PlaylistServiceError,
    get_logger,
    load_config,
    setup_logging,
    shutdown_logging,
)
from playlist_mirror.messages import IMessageTrackResolver
from playlist_mirror.service import SyncService
from playlist_mirror.spotify import SpotifyPlaylistService


logger = get_logger(__name__)


class CommandFailed(Exception):
    """A facade call returned success=False; the message was already printed."""


# =============================================================================
# Argument parsing
# =============================================================================

def _parse_pair(value: str) -> PairKey:
    try:
        return PairKey.parse(value)
    except ValueError as e:
        raise click.BadParameter(str(e)) from e


def _parse_schedules(ctx: click.Context, param: click.Parameter, values: tuple[str, ...]) -> list[tuple[PairKey, str]]:
    schedules = []
    for value in values:
        pair_text, sep, trigger_time = value.rpartition("@")
        if not sep:
            raise click.BadParameter(f"Expected PLAYLIST_ID:CONVERSATION_ID@HH:MM, got {value!r}")
        schedules.append((_parse_pair(pair_text), trigger_time))
    return schedules


def _parse_pairs(ctx: click.Context, param: click.Parameter, values: tuple[str, ...]) -> list[PairKey]:
    return [_parse_pair(value) for value in values]


# =============================================================================
# Wiring
# =============================================================================

def _load(ctx: click.Context) -> Config:
    """Load configuration and set up logging for the current command."""
    config = load_config(ctx.obj.get("config_path"))
    setup_logging(
        level="DEBUG" if ctx.obj.get("verbose") else config.logging.level,
        log_file=config.logging.file,
        colored_output=config.logging.colored_output,
        max_size=config.logging.max_size,
        backup_count=config.logging.backup_count
    )
    return config


def _open_database(config: Config) -> Database:
    db_path = config.storage.database_path
    db_path.parent.mkdir(parents=True, exist_ok=True)
    return Database(db_path)


def _build_service(config: Config) -> SyncService:
    """
    Connect to Spotify and assemble the sync service.

    Raises:
        PlaylistServiceError: If Spotify authentication fails.
        PersistenceError: If the mirror database cannot be opened.
    """
    playlist_service = SpotifyPlaylistService.connect(config.spotify)
    database = _open_database(config)
    resolver = IMessageTrackResolver(config.messages.database_path)
    return SyncService(playlist_service, resolver, database, config.sync)


def _require_success(result: dict[str, Any]) -> dict[str, Any]:
    if not result["success"]:
        click.echo(f"Error ({result['code']}): {result['error']}", err=True)
        raise CommandFailed(result["error"])
    return result


def _wait_for_interrupt() -> None:
    """Block the main thread until Ctrl+C."""
    stop = threading.Event()
    while not stop.wait(1.0):
        pass


def handle_errors(func: Callable[..., None]) -> Callable[..., None]:
    """Map exceptions of a command to a message and an exit code."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> None:
        try:
            func(*args, **kwargs)

        except ConfigError as e:
            click.echo(f"Configuration error: {e.message}", err=True)
            sys.exit(1)

        except PersistenceError as e:
            click.echo(f"Database error: {e.message}", err=True)
            logger.error(f"Database error: {e.message}", exc_info=True)
            sys.exit(2)

        except PlaylistServiceError as e:
            click.echo(f"Spotify error: {e.message}", err=True)
            if e.is_auth_error:
                click.echo("Check your client_id, client_secret and redirect_uri in config.yaml", err=True)
            logger.error(f"Spotify error: {e.message}", exc_info=True)
            sys.exit(3)

        except PlaylistMirrorError as e:
            click.echo(f"Error: {e.message}", err=True)
            logger.error(f"Error: {e.message}", exc_info=True)
            sys.exit(4)

        except CommandFailed:
            sys.exit(4)

        except KeyboardInterrupt:
            click.echo("\nInterrupted by user", err=True)
            logger.info("Interrupted by user")
            sys.exit(130)

        except click.ClickException:
            raise

        except Exception as e:
            click.echo(f"Unexpected error: {e}", err=True)
            logger.exception("Unexpected error")
            sys.exit(1)

        finally:
            shutdown_logging()

    return wrapper


# =============================================================================
# Commands
# =============================================================================

@click.group()
@click.option(
    "--config", "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    metavar="<config.yaml>",
    help="Configuration file (default: ./config.yaml)"
)
@click.option("--verbose", "-v", is_flag=True, help="Log DEBUG messages to the console")
@click.version_option(__version__, prog_name="playlist-mirror")
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None, verbose: bool) -> None:
    """
    Mirror Spotify links shared in iMessage conversations into playlists.
    """
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["verbose"] = verbose


@cli.command()
@click.option(
    "--schedule", "schedules",
    multiple=True,
    callback=_parse_schedules,
    metavar="<playlist:conversation@HH:MM>",
    help="Create or update a daily schedule before running"
)
@click.option(
    "--poll", "polls",
    multiple=True,
    callback=_parse_pairs,
    metavar="<playlist:conversation>",
    help="Start real-time polling of a pair before running"
)
@click.pass_context
@handle_errors
def run(ctx: click.Context, schedules: list[tuple[PairKey, str]], polls: list[PairKey]) -> None:
    """Run the sync engine in the foreground until Ctrl+C."""
    config = _load(ctx)
    service = _build_service(config)
    try:
        restored = service.start()
        click.echo(
            f"Restored {restored['schedules']} schedules and {restored['polling']} polled pairs"
        )

        for pair, trigger_time in schedules:
            result = _require_success(
                service.create_or_update_schedule(pair.playlist_id, pair.conversation_id, trigger_time)
            )
            click.echo(f"{result['message']}: {pair} daily at {trigger_time}")

        for pair in polls:
            result = service.start_polling(pair.playlist_id, pair.conversation_id)
            if result["success"]:
                click.echo(f"Polling {pair} every {config.sync.poll_interval}s")
            elif result["code"] == "AlreadyActive":
                click.echo(f"Already polling {pair}")
            else:
                _require_success(result)

        click.echo("Running. Press Ctrl+C to stop.")
        _wait_for_interrupt()
    finally:
        service.shutdown(wait=True)
        service.database.close()


@cli.command()
@click.pass_context
@handle_errors
def status(ctx: click.Context) -> None:
    """Show persisted schedules and polled pairs."""
    config = _load(ctx)
    database = _open_database(config)
    try:
        schedules = database.get_active_schedules()
        polling = database.get_active_polling()
    finally:
        database.close()

    click.echo(f"Schedules ({len(schedules)}):")
    for record in schedules:
        last_run = record.last_run_at.isoformat() if record.last_run_at else "never"
        click.echo(f"  {record.pair}  daily at {record.trigger_time}  (last run: {last_run})")

    click.echo(f"Real-time polling ({len(polling)}):")
    for record in polling:
        click.echo(f"  {record.pair}  since {record.watermark.isoformat()}")


@cli.command()
@click.argument("playlist_id")
@click.argument("track_ids", nargs=-1)
@click.option(
    "--conversation", "conversation_id",
    default=None,
    metavar="<id>",
    help="Use every track link of this conversation"
)
@click.pass_context
@handle_errors
def reconcile(ctx: click.Context, playlist_id: str, track_ids: tuple[str, ...], conversation_id: str | None) -> None:
    """Sync a playlist once with the given tracks or a conversation's links."""
    if not track_ids and conversation_id is None:
        raise click.UsageError("Give TRACK_IDS or --conversation")

    config = _load(ctx)
    service = _build_service(config)
    try:
        candidates = list(track_ids)
        if conversation_id is not None:
            links = _require_success(service.get_conversation_links(conversation_id))["links"]
            candidates.extend(link["track_id"] for link in links)

        outcome = _require_success(service.reconcile_now(playlist_id, candidates))["outcome"]
        click.echo(
            f"Added {outcome['added_count']}, removed {outcome['removed_duplicate_count']} duplicates, "
            f"{outcome['already_present_count']} already present, "
            f"{outcome['skipped_invalid_count']} invalid. "
            f"Playlist now has {outcome['final_track_count']} tracks."
        )
    finally:
        service.database.close()


@cli.command()
@click.argument("name")
@click.argument("track_ids", nargs=-1)
@click.option("--description", default=None, help="Playlist description")
@click.option(
    "--conversation", "conversation_id",
    default=None,
    metavar="<id>",
    help="Use every track link of this conversation"
)
@click.pass_context
@handle_errors
def create(
    ctx: click.Context,
    name: str,
    track_ids: tuple[str, ...],
    description: str | None,
    conversation_id: str | None
) -> None:
    """Create a playlist from track IDs or a conversation's links."""
    if not track_ids and conversation_id is None:
        raise click.UsageError("Give TRACK_IDS or --conversation")

    config = _load(ctx)
    service = _build_service(config)
    try:
        candidates = list(track_ids)
        if conversation_id is not None:
            links = _require_success(service.get_conversation_links(conversation_id))["links"]
            candidates.extend(link["track_id"] for link in links)

        result = _require_success(service.create_playlist_from_links(name, description, candidates))
        playlist = result["playlist"]
        click.echo(f"Created '{playlist['name']}' ({playlist['id']}) with {result['added_count']} tracks")
        if playlist.get("url"):
            click.echo(playlist["url"])
    finally:
        service.database.close()


@cli.command()
@click.pass_context
@handle_errors
def playlists(ctx: click.Context) -> None:
    """List your Spotify playlists."""
    config = _load(ctx)
    service = _build_service(config)
    try:
        result = _require_success(service.list_playlists())
    finally:
        service.database.close()

    for playlist in result["playlists"]:
        click.echo(f"{playlist['id']}  {playlist['name']}  ({playlist['track_count']} tracks)")


@cli.command()
@click.pass_context
@handle_errors
def conversations(ctx: click.Context) -> None:
    """List conversations of the Messages database."""
    config = _load(ctx)
    resolver = IMessageTrackResolver(config.messages.database_path)
    for conversation in resolver.list_conversations():
        label = conversation.display_name or conversation.chat_identifier
        click.echo(f"{conversation.conversation_id}  {label}")


def main() -> None:
    """Entry point for the playlist-mirror console script."""
    cli(obj={})


if __name__ == "__main__":
    main()
