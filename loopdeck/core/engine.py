"""
Loopdeck engine: the single object a host application talks to.

Owns the audio context, the wake-up timers, the master bus and every track,
and wires the loop scheduler, envelope controller and track state machine
together. Nothing here is process-global; create as many engines as needed
and close them when done.
"""
from __future__ import annotations
import logging
from typing import Any, Callable, Optional

from .config import ENGINE_CONFIG, EngineConfig, PlaybackState
from .envelope import EnvelopeController
from .errors import InvalidTrackReference
from .graph import AudioContext
from .master_bus import MasterBus
from .scheduler import LoopScheduler
from .state_machine import TrackStateMachine
from .timers import TimerQueue
from .track import Track
from .types import LoadedTrack, TrackSettingsEvent, TrackStateEvent

logger = logging.getLogger("Loopdeck")


class Engine:
    """
    Soundboard playback engine.

    Event System:
    - Register callbacks with: engine.on('event_name', callback)
    - Callback failures are logged and never break playback

    Available Events:
    - 'state_changed': (TrackStateEvent)
    - 'settings_changed': (TrackSettingsEvent)
    - 'track_added': (track_id: str)
    - 'track_removed': (track_id: str)
    - 'master_volume_changed': (volume: float)

    The host must call `poll()` regularly (every few milliseconds) on the
    thread that owns the engine; all scheduling happens inside it.
    """

    def __init__(
        self,
        context: Optional[AudioContext] = None,
        timers: Optional[TimerQueue] = None,
        config: EngineConfig = ENGINE_CONFIG,
        master_volume: Optional[float] = None
    ) -> None:
        """
        Args:
            context: Audio context to render into; defaults to the sound card
            timers: Wake-up timer queue; defaults to a monotonic-clock queue
            config: Engine configuration
            master_volume: Initial master gain (default from config)
        """
        self.config = config
        if context is None:
            from .device import DeviceAudioContext

            context = DeviceAudioContext(
                samplerate=config.samplerate,
                channels=config.channels,
                blocksize=config.blocksize
            )
        self.context = context
        self.timers = timers if timers is not None else TimerQueue()
        if master_volume is None:
            master_volume = config.default_master_volume
        self.master = MasterBus(self.context, master_volume)
        self.envelope = EnvelopeController(self.context, self.timers, config)
        self.scheduler = LoopScheduler(
            self.context,
            self.timers,
            config,
            on_finished=self._track_finished,
            on_conflict=self._track_conflict
        )
        self.machine = TrackStateMachine(
            self.context,
            self.timers,
            self.master,
            self.envelope,
            self.scheduler,
            on_state_changed=self._state_changed,
            on_idle=self._track_idle
        )
        self._tracks: dict[str, Track] = {}
        self._closed = False
        self._callbacks: dict[str, list[Callable]] = {
            'state_changed': [],          # (TrackStateEvent)
            'settings_changed': [],       # (TrackSettingsEvent)
            'track_added': [],            # (track_id)
            'track_removed': [],          # (track_id)
            'master_volume_changed': [],  # (volume)
        }
        logger.info("Engine initialized (%d Hz, %d ch)", self.context.samplerate, self.context.channels)

    # --- Event System ---

    def on(self, event: str, callback: Callable) -> None:
        """
        Register a callback for an event.

        Args:
            event: Event name (see class docstring for available events)
            callback: Function to call when event occurs
        """
        if event in self._callbacks:
            self._callbacks[event].append(callback)
        else:
            logger.warning("Unknown event: %s. Available: %s", event, list(self._callbacks.keys()))

    def off(self, event: str, callback: Callable) -> None:
        """Unregister a callback for an event."""
        if event in self._callbacks and callback in self._callbacks[event]:
            self._callbacks[event].remove(callback)

    def _emit(self, event: str, *args: Any) -> None:
        """Emit an event to all registered callbacks."""
        for callback in list(self._callbacks.get(event, [])):
            try:
                callback(*args)
            except Exception as e:
                logger.error("Error in callback for %s: %s", event, e, exc_info=True)

    # --- Lifecycle ---

    @property
    def closed(self) -> bool:
        return self._closed

    def start(self) -> bool:
        """
        Start audio output.

        Returns:
            True if the context is ready to render
        """
        if self._closed:
            return False
        return self.context.open()

    def poll(self) -> int:
        """
        Run pending scheduling work: natural-completion notifications from
        the audio context, then due timers.

        Returns:
            Number of callbacks processed
        """
        if self._closed:
            return 0
        return self.context.dispatch_ended() + self.timers.run_due()

    def close(self) -> None:
        """Hard-stop every track and release the audio context."""
        if self._closed:
            return
        for track in list(self._tracks.values()):
            self.machine.abort(track)
        self.timers.clear()
        self.context.close()
        self._closed = True
        logger.info("Engine closed")

    def __enter__(self) -> "Engine":
        self.start()
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    # --- Track Management ---

    @property
    def tracks(self) -> list[Track]:
        """Tracks in the order they were added."""
        return list(self._tracks.values())

    @property
    def active_tracks(self) -> list[Track]:
        """Tracks that are playing or fading out."""
        return [t for t in self._tracks.values() if t.is_active]

    def __len__(self) -> int:
        return len(self._tracks)

    def __contains__(self, track_id: object) -> bool:
        return track_id in self._tracks

    def get_track(self, track_id: str) -> Track:
        """
        Look up a track.

        Raises:
            InvalidTrackReference: if no such track exists
        """
        try:
            return self._tracks[track_id]
        except KeyError:
            raise InvalidTrackReference(track_id) from None

    def add_track(self, loaded: LoadedTrack, track_id: Optional[str] = None) -> Track:
        """
        Register a decoded buffer as a new track.

        Args:
            loaded: Buffer and settings from the decoder or the library
            track_id: Keep an existing id (e.g. restored from the library)

        Raises:
            ValueError: if the buffer is empty, its samplerate differs from
                the engine's, or the id is already taken
        """
        buffer = loaded.buffer
        if buffer.frames == 0:
            raise ValueError(f"Track {loaded.metadata.name!r} has no audio")
        if buffer.samplerate != self.context.samplerate:
            raise ValueError(
                f"Track {loaded.metadata.name!r} is {buffer.samplerate} Hz, engine runs at {self.context.samplerate} Hz"
            )
        if track_id is not None and track_id in self._tracks:
            raise ValueError(f"Duplicate track id: {track_id}")
        if loaded.metadata.fade_duration < 0:
            raise ValueError("Fade duration cannot be negative")

        track = Track.from_loaded(loaded, track_id)
        track.volume = min(1.0, max(0.0, track.volume))
        self._tracks[track.id] = track
        logger.info("Track added: %s (%.2fs)", track.name, track.duration)
        self._emit('track_added', track.id)
        return track

    def remove_track(self, track_id: str) -> None:
        """
        Delete a track. A sounding track is stopped first (with its fade)
        and the record is released once teardown completes.
        """
        track = self.get_track(track_id)
        track.pending_removal = True
        if track.state is PlaybackState.IDLE:
            self._release(track)
        elif track.state is not PlaybackState.STOPPING:
            self.machine.stop(track)

    def clear(self) -> None:
        """Remove every track."""
        for track_id in list(self._tracks):
            self.remove_track(track_id)

    def _release(self, track: Track) -> None:
        if self._tracks.pop(track.id, None) is None:
            return
        logger.info("Track removed: %s", track.name)
        self._emit('track_removed', track.id)

    # --- Playback Control ---

    def play(self, track_id: str) -> bool:
        """
        Start a track. Returns False if it was already playing, or if the
        audio context is not running.
        """
        track = self.get_track(track_id)
        if track.pending_removal or self._closed:
            return False
        if not self.context.running:
            logger.warning("Cannot play %s: audio output is not running", track.name)
            return False
        return self.machine.play(track)

    def stop(self, track_id: str) -> bool:
        """Stop a track. Returns False if it was idle or already stopping."""
        return self.machine.stop(self.get_track(track_id))

    def toggle(self, track_id: str) -> bool:
        """
        Play an idle (or fading-out) track, stop a playing one.

        Returns:
            True if the track is now playing
        """
        track = self.get_track(track_id)
        if track.state in (PlaybackState.STARTING, PlaybackState.PLAYING):
            self.machine.stop(track)
            return False
        return self.play(track_id)

    def stop_all(self) -> int:
        """Stop every playing track. Returns how many were stopped."""
        return sum(1 for track in list(self._tracks.values()) if self.machine.stop(track))

    def is_playing(self, track_id: str) -> bool:
        return self.get_track(track_id).state is PlaybackState.PLAYING

    # --- Settings ---

    def set_volume(self, track_id: str, volume: float, notify: bool = True) -> float:
        """
        Set a track's volume; applied live if it is playing. With
        `notify=False` no 'settings_changed' event is emitted.
        """
        track = self.get_track(track_id)
        applied = self.machine.set_volume(track, volume)
        if notify:
            self._settings_changed(track)
        return applied

    def set_fade_enabled(self, track_id: str, enabled: bool) -> None:
        track = self.get_track(track_id)
        track.fade_enabled = bool(enabled)
        self._settings_changed(track)

    def set_fade_duration(self, track_id: str, seconds: float) -> None:
        """
        Raises:
            ValueError: if `seconds` is negative
        """
        if seconds < 0:
            raise ValueError("Fade duration cannot be negative")
        track = self.get_track(track_id)
        track.fade_duration = float(seconds)
        self._settings_changed(track)

    def set_loop_enabled(self, track_id: str, enabled: bool) -> None:
        """Toggle looping; takes effect at the next loop boundary."""
        track = self.get_track(track_id)
        self.machine.set_loop_enabled(track, enabled)
        self._settings_changed(track)

    @property
    def master_volume(self) -> float:
        return self.master.volume

    def set_master_volume(self, volume: float, notify: bool = True) -> float:
        """
        Set the master gain instantly (no fade).

        Args:
            volume: New gain, clamped to [0, 1]
            notify: Emit 'master_volume_changed'; pass False for intermediate
                values while a control is being dragged
        """
        applied = self.master.set_volume(volume)
        if notify:
            self._emit('master_volume_changed', applied)
        return applied

    # --- Internal wiring ---

    def _settings_changed(self, track: Track) -> None:
        self._emit('settings_changed', TrackSettingsEvent(track.id, track.metadata()))

    def _state_changed(self, track: Track, state: PlaybackState) -> None:
        self._emit('state_changed', TrackStateEvent(track.id, state))

    def _track_finished(self, track: Track) -> None:
        self.machine.finish(track)

    def _track_conflict(self, track: Track) -> None:
        self.machine.abort(track)

    def _track_idle(self, track: Track) -> None:
        if track.pending_removal:
            self._release(track)
