"""
Type definitions for the Loopdeck core module.
Value objects exchanged with the decoder, persistence and UI collaborators.
"""
from __future__ import annotations
from dataclasses import dataclass, asdict, field
from typing import Any, Callable
import numpy as np
from numpy.typing import NDArray

from .config import ENGINE_CONFIG, PlaybackState

# Audio data types
AudioArray = NDArray[np.float32]  # Shape: (frames,) or (frames, channels)
GainArray = NDArray[np.float32]   # Shape: (frames,)

# Callback types
EndedCallback = Callable[[], None]
CompletionCallback = Callable[[], None]


@dataclass(frozen=True, eq=False)
class AudioBuffer:
    """
    Immutable decoded PCM audio.

    The sample array is made read-only on construction so every segment
    scheduled for a track can share it safely.
    """
    data: AudioArray
    samplerate: int

    def __post_init__(self) -> None:
        if self.samplerate <= 0:
            raise ValueError(f"Invalid samplerate: {self.samplerate}")
        data = np.asarray(self.data, dtype=np.float32)
        if data.ndim not in (1, 2):
            raise ValueError(f"Audio data must be 1-D or 2-D, got {data.ndim}-D")
        if data is self.data:
            data = data.copy()
        data.flags.writeable = False
        object.__setattr__(self, "data", data)

    @property
    def frames(self) -> int:
        """Length in sample frames."""
        return int(self.data.shape[0])

    @property
    def channels(self) -> int:
        return 1 if self.data.ndim == 1 else int(self.data.shape[1])

    @property
    def duration(self) -> float:
        """Length in seconds."""
        return self.frames / self.samplerate

    def __repr__(self) -> str:
        return f"AudioBuffer(frames={self.frames}, channels={self.channels}, sr={self.samplerate})"


@dataclass
class TrackMetadata:
    """User-facing per-track settings, persisted by the library."""
    name: str
    icon: str = "music-note"
    volume: float = ENGINE_CONFIG.default_volume
    fade_enabled: bool = True
    fade_duration: float = ENGINE_CONFIG.default_fade_duration
    loop_enabled: bool = True

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TrackMetadata":
        """Build from a stored dict; missing keys fall back to defaults."""
        defaults = cls(name=data.get("name", "Track"))
        return cls(
            name=defaults.name,
            icon=data.get("icon", defaults.icon),
            volume=float(data.get("volume", defaults.volume)),
            fade_enabled=bool(data.get("fade_enabled", defaults.fade_enabled)),
            fade_duration=float(data.get("fade_duration", defaults.fade_duration)),
            loop_enabled=bool(data.get("loop_enabled", defaults.loop_enabled)),
        )


@dataclass
class LoadedTrack:
    """What the decoder hands to the engine: a buffer plus its settings."""
    buffer: AudioBuffer
    metadata: TrackMetadata = field(default_factory=lambda: TrackMetadata(name="Track"))

    @property
    def duration_seconds(self) -> float:
        return self.buffer.duration

    @property
    def sample_rate(self) -> int:
        return self.buffer.samplerate


@dataclass(frozen=True)
class TrackStateEvent:
    """Emitted whenever a track moves between Idle, Playing and Stopping."""
    track_id: str
    state: PlaybackState


@dataclass(frozen=True)
class TrackSettingsEvent:
    """Emitted whenever a persisted per-track setting changes."""
    track_id: str
    metadata: TrackMetadata
