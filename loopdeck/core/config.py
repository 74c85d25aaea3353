"""
Centralized configuration for Loopdeck.
All magic numbers and default settings in one place.
"""
import os
from dataclasses import dataclass, field
from enum import Enum, auto


class PlaybackState(Enum):
    """Per-track playback state."""
    IDLE = auto()
    STARTING = auto()
    PLAYING = auto()
    STOPPING = auto()


@dataclass(frozen=True, slots=True)
class EngineConfig:
    """Audio engine configuration."""
    samplerate: int = 44100
    channels: int = 2
    blocksize: int = 1024
    rearm_lead_time: float = 0.1  # next segment is armed this long before it starts
    fade_grace: float = 0.1  # slack between gain automation clock and teardown timer
    default_master_volume: float = 0.7
    default_volume: float = 0.7
    default_fade_duration: float = 2.0
    poll_interval_ms: int = 10


@dataclass(frozen=True, slots=True)
class LibraryConfig:
    """Track library (persistence) settings."""
    root: str = field(default_factory=lambda: os.path.join(os.path.expanduser("~"), ".loopdeck"))
    index_file: str = "library.json"
    audio_dir: str = "audio"
    audio_format: str = "WAV"
    audio_subtype: str = "FLOAT"


# Global config instances (immutable singletons)
ENGINE_CONFIG = EngineConfig()
LIBRARY_CONFIG = LibraryConfig()
