"""
Exception hierarchy for Loopdeck.
"""
from __future__ import annotations
from typing import Any


class LoopdeckError(Exception):
    """Base class for all Loopdeck errors."""


class InvalidTrackReference(LoopdeckError, KeyError):
    """Operation invoked with a track id the engine does not know."""

    def __init__(self, track_id: Any) -> None:
        super().__init__(track_id)
        self.track_id = track_id

    def __str__(self) -> str:
        return f"Unknown track id: {self.track_id!r}"


class SchedulingConflict(LoopdeckError):
    """Internal scheduling invariant violated for a single track."""


class AudioRoutingFailure(LoopdeckError):
    """The audio context rejected a connect/start call."""


class DecodeFailure(LoopdeckError):
    """An input could not be decoded into an audio buffer."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"Failed to decode {path}: {reason}")
        self.path = path
        self.reason = reason


class StorageError(LoopdeckError):
    """The track library could not be read or written."""
