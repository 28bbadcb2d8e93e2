"""
Message store module for playlist-mirror.

Usage:
    from playlist_mirror.messages import IMessageTrackResolver

    resolver = IMessageTrackResolver(config.messages.database_path)
    candidates = resolver.resolve("42")
"""

from playlist_mirror.messages.resolver import (
    CandidateTrack,
    Conversation,
    IMessageTrackResolver,
    TrackResolver,
    extract_track_links,
)

__all__ = [
    "CandidateTrack",
    "Conversation",
    "IMessageTrackResolver",
    "TrackResolver",
    "extract_track_links",
]
