"""
Track record and its two-slot segment holder.
"""
from __future__ import annotations
import uuid
from dataclasses import dataclass, field
from typing import Iterator, Optional

from .config import PlaybackState
from .graph import BufferSegment, GainStage
from .timers import TimerHandle
from .types import AudioBuffer, LoadedTrack, TrackMetadata


class SegmentSlots:
    """
    Exactly two segment slots: the audible segment and the pre-armed next.

    Installing a segment always takes the older slot and hands back whatever
    occupied it, so a third live segment cannot be represented.
    """
    __slots__ = ('_slots', '_next')

    def __init__(self) -> None:
        self._slots: list[Optional[BufferSegment]] = [None, None]
        self._next = 0

    def install(self, segment: BufferSegment) -> Optional[BufferSegment]:
        """Put `segment` in the oldest slot; return the evicted occupant."""
        evicted = self._slots[self._next]
        self._slots[self._next] = segment
        self._next ^= 1
        return evicted

    def peek_oldest(self) -> Optional[BufferSegment]:
        """The segment the next `install` would evict."""
        return self._slots[self._next]

    def newest(self) -> Optional[BufferSegment]:
        """The most recently installed segment."""
        return self._slots[self._next ^ 1]

    def take_all(self) -> list[BufferSegment]:
        """Empty both slots, oldest first."""
        taken = [s for s in (self._slots[self._next], self._slots[self._next ^ 1]) if s is not None]
        self._slots = [None, None]
        self._next = 0
        return taken

    def __contains__(self, segment: object) -> bool:
        return any(s is segment for s in self._slots if s is not None)

    def __iter__(self) -> Iterator[BufferSegment]:
        return iter([s for s in self._slots if s is not None])

    def __len__(self) -> int:
        return sum(1 for s in self._slots if s is not None)


@dataclass(eq=False)
class Track:
    """
    A playable unit: an immutable buffer plus mutable per-track settings
    and the live playback resources that exist only while it sounds.
    """
    buffer: AudioBuffer
    name: str = "Track"
    icon: str = "music-note"
    volume: float = 0.7
    loop_enabled: bool = True
    fade_enabled: bool = True
    fade_duration: float = 2.0
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    # Playback resources
    state: PlaybackState = PlaybackState.IDLE
    gain_stage: Optional[GainStage] = field(default=None, repr=False)
    slots: SegmentSlots = field(default_factory=SegmentSlots, repr=False)
    timeline_origin: float = 0.0
    segments_armed: int = 0
    pending_rearm: Optional[TimerHandle] = field(default=None, repr=False)
    pending_fade_out: Optional[TimerHandle] = field(default=None, repr=False)
    pending_removal: bool = False

    @classmethod
    def from_loaded(cls, loaded: LoadedTrack, track_id: Optional[str] = None) -> "Track":
        meta = loaded.metadata
        track = cls(
            buffer=loaded.buffer,
            name=meta.name,
            icon=meta.icon,
            volume=meta.volume,
            loop_enabled=meta.loop_enabled,
            fade_enabled=meta.fade_enabled,
            fade_duration=meta.fade_duration,
        )
        if track_id is not None:
            track.id = track_id
        return track

    @property
    def duration(self) -> float:
        return self.buffer.duration

    @property
    def scheduled_position(self) -> float:
        """Audio-clock time at which the next segment begins."""
        return self.timeline_origin + self.segments_armed * self.buffer.duration

    @property
    def is_active(self) -> bool:
        """Playing or fading out."""
        return self.state in (PlaybackState.STARTING, PlaybackState.PLAYING, PlaybackState.STOPPING)

    @property
    def effective_fade_duration(self) -> float:
        return self.fade_duration if self.fade_enabled else 0.0

    def metadata(self) -> TrackMetadata:
        return TrackMetadata(
            name=self.name,
            icon=self.icon,
            volume=self.volume,
            fade_enabled=self.fade_enabled,
            fade_duration=self.fade_duration,
            loop_enabled=self.loop_enabled,
        )

    def __repr__(self) -> str:
        return f"Track({self.name!r}, id={self.id[:8]}, {self.duration:.2f}s, {self.state.name})"
