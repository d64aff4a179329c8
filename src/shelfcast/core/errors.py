"""Error taxonomy of the playback core."""

from __future__ import annotations


class ShelfcastError(Exception):
    kind = "error"
    retryable = False


class ResolutionError(ShelfcastError):
    """No playable source could be determined (server unreachable, item missing)."""

    kind = "resolution"
    retryable = True


class SessionError(ShelfcastError):
    """The media server refused to open or continue a playback session."""

    kind = "session"
    retryable = True


class PlaybackError(ShelfcastError):
    """The audio output failed while decoding or fetching media."""

    kind = "playback"
    retryable = True


class AutoplayBlockedError(PlaybackError):
    """Raised by outputs whose platform refuses to start without user action."""


class SyncError(ShelfcastError):
    """Heartbeat flush or session close failed. Never fatal for playback."""

    kind = "sync"
