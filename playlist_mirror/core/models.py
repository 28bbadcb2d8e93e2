"""
Data models for mirrored pairs and their persisted records.

This module defines the dataclasses shared by the database, the runners
and the caller-facing facade.

Design Decisions:
    - PairKey is frozen and hashable so it can key registries directly
    - Records are frozen; updates produce new records via dataclasses.replace
    - All timestamps are timezone-aware UTC datetimes
    - to_dict() produces the JSON-friendly shape returned by the facade

Usage:
    from playlist_mirror.core.models import PairKey, ScheduleRecord

    pair = PairKey("37i9dQZF1DXcBWIGoYBM5M", "42")
    print(pair)  # "37i9dQZF1DXcBWIGoYBM5M:42"
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any


def utc_now() -> datetime:
    """Return the current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_iso(value: datetime | None) -> str | None:
    """
    Serialize a datetime for storage.

    Naive datetimes are assumed to already be UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def from_iso(value: str | None) -> datetime | None:
    """Parse a stored ISO-8601 timestamp back into an aware UTC datetime."""
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


@dataclass(frozen=True)
class PairKey:
    """
    Composite identifier of one managed synchronization relationship.

    Attributes:
        playlist_id: Target Spotify playlist ID.
        conversation_id: Source conversation identifier in the message store
                         (the chat ROWID for iMessage, kept as a string).
    """
    playlist_id: str
    conversation_id: str

    def __str__(self) -> str:
        return f"{self.playlist_id}:{self.conversation_id}"

    @classmethod
    def parse(cls, value: str) -> "PairKey":
        """
        Parse the "<playlist_id>:<conversation_id>" string form.

        Raises:
            ValueError: If either side is missing.
        """
        playlist_id, sep, conversation_id = value.partition(":")
        if not sep or not playlist_id.strip() or not conversation_id.strip():
            raise ValueError(f"Expected PLAYLIST_ID:CONVERSATION_ID, got {value!r}")
        return cls(playlist_id.strip(), conversation_id.strip())


@dataclass(frozen=True)
class ScheduleRecord:
    """
    Persisted daily schedule for a pair.

    Attributes:
        pair: The pair this schedule belongs to.
        trigger_time: Wall-clock "HH:mm" in the process's local time zone.
        active: False once the schedule was deleted (soft delete).
        last_run_at: When the last fire happened, or None if it never fired.
    """
    pair: PairKey
    trigger_time: str
    active: bool = True
    last_run_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "playlist_id": self.pair.playlist_id,
            "conversation_id": self.pair.conversation_id,
            "trigger_time": self.trigger_time,
            "active": self.active,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
        }


@dataclass(frozen=True)
class PollingRecord:
    """
    Persisted real-time polling state for a pair.

    Attributes:
        pair: The pair being polled.
        watermark: Messages newer than this are fetched on the next tick.
                   Only ever moves forward.
        active: False once polling was stopped.
    """
    pair: PairKey
    watermark: datetime
    active: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "playlist_id": self.pair.playlist_id,
            "conversation_id": self.pair.conversation_id,
            "watermark": self.watermark.isoformat(),
            "active": self.active,
        }


@dataclass(frozen=True)
class PlaylistSummary:
    """Locally cached playlist metadata (name and track count)."""
    playlist_id: str
    name: str
    track_count: int
    created_at: datetime | None = None
