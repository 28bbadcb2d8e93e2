"""
Track resolver backed by the macOS Messages database.

This module reads Spotify track links out of a conversation stored in
chat.db. The database is opened read-only for every query; Messages keeps
writing to it while the engine runs.

Link Formats:
    https://open.spotify.com/track/<id>[?si=...]   -> link_type "url"
    spotify:track:<id>                             -> link_type "uri"

Timestamps:
    message.date counts from the Apple epoch (2001-01-01 UTC). Current macOS
    versions store nanoseconds, older ones seconds; both are normalized.

Usage:
    resolver = IMessageTrackResolver(Path("~/Library/Messages/chat.db").expanduser())

    for candidate in resolver.resolve("42", since=watermark):
        print(candidate.track_id, candidate.sender)
"""

import re
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Protocol

from playlist_mirror.core.exceptions import ResolverError
from playlist_mirror.core.logger import get_logger


logger = get_logger(__name__)

APPLE_EPOCH = datetime(2001, 1, 1, tzinfo=timezone.utc)
NANOSECONDS = 1_000_000_000

# Dates above this are nanoseconds; seconds since 2001 stay far below it
NANOSECOND_THRESHOLD = 1_000_000_000_000

SPOTIFY_URL_PATTERN = re.compile(r"https://open\.spotify\.com/track/([a-zA-Z0-9]+)")
SPOTIFY_URI_PATTERN = re.compile(r"spotify:track:([a-zA-Z0-9]+)")

_NORMALIZED_DATE = (
    f"(CASE WHEN m.date > {NANOSECOND_THRESHOLD} THEN m.date "
    f"ELSE m.date * {NANOSECONDS} END)"
)

_LINKS_QUERY = f"""
    SELECT
        m.ROWID AS id,
        m.text,
        {_NORMALIZED_DATE} AS date_ns,
        CASE
            WHEN m.is_from_me = 1 THEN 'You'
            ELSE COALESCE(h.id, 'Unknown')
        END AS sender_name
    FROM message m
    JOIN chat_message_join cmj ON m.ROWID = cmj.message_id
    LEFT JOIN handle h ON m.handle_id = h.ROWID
    WHERE cmj.chat_id = ?
        AND (m.text LIKE '%open.spotify.com%' OR m.text LIKE '%spotify:track:%')
        {{since_clause}}
    ORDER BY date_ns DESC, m.ROWID DESC
"""

_CONVERSATIONS_QUERY = """
    SELECT c.ROWID AS id, c.chat_identifier, c.display_name
    FROM chat c
    WHERE c.chat_identifier IS NOT NULL
    ORDER BY c.ROWID
"""


@dataclass(frozen=True)
class CandidateTrack:
    """
    A track link found in a conversation.

    Attributes:
        track_id: The ID captured from the link. Not validated here; the
                  reconciler decides whether it is a real track ID.
        source_link: The matched link text.
        link_type: "url" or "uri".
        message_id: ROWID of the message that contained the link.
        sender: "You" for own messages, otherwise the handle (phone/email).
        occurred_at: When the message was sent (UTC).
    """
    track_id: str
    source_link: str
    link_type: str
    message_id: int | None = None
    sender: str | None = None
    occurred_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "track_id": self.track_id,
            "link": self.source_link,
            "type": self.link_type,
            "message_id": self.message_id,
            "sender": self.sender,
            "date": self.occurred_at.isoformat() if self.occurred_at else None,
        }


@dataclass(frozen=True)
class Conversation:
    """A chat in the message store."""
    conversation_id: str
    chat_identifier: str
    display_name: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.conversation_id,
            "chat_identifier": self.chat_identifier,
            "display_name": self.display_name,
        }


class TrackResolver(Protocol):
    """Source of candidate tracks for a conversation."""

    def resolve(self, conversation_id: str, since: datetime | None = None) -> list[CandidateTrack]:
        """Return candidates newest message first, optionally only after since."""
        ...

    def list_conversations(self) -> list[Conversation]:
        ...


def apple_time_to_datetime(value: int | None) -> datetime | None:
    """Convert an Apple-epoch nanosecond timestamp to a UTC datetime."""
    if value is None:
        return None
    return APPLE_EPOCH + timedelta(microseconds=value // 1000)


def datetime_to_apple_time(value: datetime) -> int:
    """Convert a datetime to Apple-epoch nanoseconds. Naive values are UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    delta = value - APPLE_EPOCH
    return (delta.days * 86_400 + delta.seconds) * NANOSECONDS + delta.microseconds * 1000


def extract_track_links(messages: list[dict[str, Any]]) -> list[CandidateTrack]:
    """
    Extract Spotify track links from message rows.

    Args:
        messages: Rows with keys id, text, sender_name and date_ns, in the
                  order candidates should be returned.

    Returns:
        One CandidateTrack per distinct track ID, first occurrence wins.
        Within a message, web links are collected before URIs.
    """
    candidates: list[CandidateTrack] = []
    seen: set[str] = set()

    for message in messages:
        text = message.get("text")
        if not text:
            continue
        occurred_at = apple_time_to_datetime(message.get("date_ns"))

        for link_type, pattern in (("url", SPOTIFY_URL_PATTERN), ("uri", SPOTIFY_URI_PATTERN)):
            for match in pattern.finditer(text):
                track_id = match.group(1)
                if track_id in seen:
                    continue
                seen.add(track_id)
                candidates.append(CandidateTrack(
                    track_id=track_id,
                    source_link=match.group(0),
                    link_type=link_type,
                    message_id=message.get("id"),
                    sender=message.get("sender_name"),
                    occurred_at=occurred_at,
                ))

    return candidates


class IMessageTrackResolver:
    """
    Read-only TrackResolver over a Messages chat.db file.

    A new connection is opened per query and closed afterwards, so the
    resolver is safe to share between scheduler threads.
    """

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path

    def _connect(self) -> sqlite3.Connection:
        if not self.db_path.exists():
            raise ResolverError(
                f"Messages database not found: {self.db_path}",
                details={"path": str(self.db_path)}
            )
        try:
            conn = sqlite3.connect(f"{self.db_path.resolve().as_uri()}?mode=ro", uri=True, timeout=10.0)
        except sqlite3.Error as e:
            raise ResolverError(
                f"Error opening Messages database: {e}",
                details={"path": str(self.db_path), "original_error": str(e)}
            ) from e
        conn.row_factory = sqlite3.Row
        return conn

    def _query(self, query: str, params: tuple) -> list[dict[str, Any]]:
        conn = self._connect()
        try:
            return [dict(row) for row in conn.execute(query, params).fetchall()]
        except sqlite3.Error as e:
            raise ResolverError(
                f"Error reading Messages database: {e}",
                details={"path": str(self.db_path), "original_error": str(e)}
            ) from e
        finally:
            conn.close()

    def resolve(self, conversation_id: str, since: datetime | None = None) -> list[CandidateTrack]:
        """
        Return the Spotify track links of a conversation, newest message first.

        Args:
            conversation_id: chat ROWID (as a string).
            since: Only messages strictly after this instant. None scans the
                   whole conversation.

        Raises:
            ResolverError: If the database cannot be opened or queried.
        """
        params: tuple = (conversation_id,)
        since_clause = ""
        if since is not None:
            since_clause = f"AND {_NORMALIZED_DATE} > ?"
            params += (datetime_to_apple_time(since),)

        rows = self._query(_LINKS_QUERY.format(since_clause=since_clause), params)
        candidates = extract_track_links(rows)
        logger.debug(
            f"Conversation {conversation_id}: {len(rows)} messages with links, "
            f"{len(candidates)} distinct tracks"
        )
        return candidates

    def list_conversations(self) -> list[Conversation]:
        """List all chats that have an identifier."""
        return [
            Conversation(
                conversation_id=str(row["id"]),
                chat_identifier=row["chat_identifier"],
                display_name=row["display_name"] or None,
            )
            for row in self._query(_CONVERSATIONS_QUERY, ())
        ]
