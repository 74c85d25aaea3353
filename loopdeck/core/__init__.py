"""
Loopdeck Core Module

This module contains the playback scheduling engine:
- Engine: Facade owning the context, timers, master bus and tracks
- LoopScheduler: Double-buffered gapless looping
- EnvelopeController: Fade-in / fade-out ramps
- TrackStateMachine: Per-track play/stop lifecycle
- MasterBus: Shared output gain
- AudioContext: Audio graph and clock (DeviceAudioContext in .device)
"""
from .engine import Engine
from .scheduler import LoopScheduler
from .envelope import EnvelopeController
from .state_machine import TrackStateMachine
from .master_bus import MasterBus
from .track import Track, SegmentSlots
from .timers import TimerQueue, TimerHandle
from .graph import AudioContext, GainStage, BufferSegment
from .types import (
    AudioBuffer,
    LoadedTrack,
    TrackMetadata,
    TrackSettingsEvent,
    TrackStateEvent
)
from .errors import (
    LoopdeckError,
    InvalidTrackReference,
    SchedulingConflict,
    AudioRoutingFailure,
    DecodeFailure,
    StorageError
)
from .config import (
    ENGINE_CONFIG,
    LIBRARY_CONFIG,
    EngineConfig,
    LibraryConfig,
    PlaybackState
)

__all__ = [
    # Main classes
    'Engine',
    'LoopScheduler',
    'EnvelopeController',
    'TrackStateMachine',
    'MasterBus',
    'Track',
    'SegmentSlots',
    'TimerQueue',
    'TimerHandle',
    'AudioContext',
    'GainStage',
    'BufferSegment',
    # Values
    'AudioBuffer',
    'LoadedTrack',
    'TrackMetadata',
    'TrackSettingsEvent',
    'TrackStateEvent',
    # Errors
    'LoopdeckError',
    'InvalidTrackReference',
    'SchedulingConflict',
    'AudioRoutingFailure',
    'DecodeFailure',
    'StorageError',
    # Config
    'ENGINE_CONFIG',
    'LIBRARY_CONFIG',
    'EngineConfig',
    'LibraryConfig',
    'PlaybackState',
]
