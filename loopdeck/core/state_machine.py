"""
Per-track lifecycle: Idle -> Starting -> Playing -> Stopping -> Idle.
"""
from __future__ import annotations
import logging
from functools import partial
from typing import Callable, Optional

from .config import PlaybackState
from .envelope import EnvelopeController
from .errors import AudioRoutingFailure, SchedulingConflict
from .graph import AudioContext
from .master_bus import MasterBus
from .scheduler import LoopScheduler
from .timers import TimerQueue
from .track import Track

logger = logging.getLogger("Loopdeck")

StateCallback = Callable[[Track, PlaybackState], None]


class TrackStateMachine:
    """
    Drives a track through its lifecycle.

    Starting and Stopping are short-lived but gate re-entrancy: a second
    `play` while Starting/Playing and a second `stop` while Stopping/Idle
    are no-ops.
    """
    __slots__ = ('_context', '_timers', '_master', '_envelope', '_scheduler', '_on_state_changed', '_on_idle')

    def __init__(
        self,
        context: AudioContext,
        timers: TimerQueue,
        master: MasterBus,
        envelope: EnvelopeController,
        scheduler: LoopScheduler,
        on_state_changed: Optional[StateCallback] = None,
        on_idle: Optional[Callable[[Track], None]] = None
    ) -> None:
        self._context = context
        self._timers = timers
        self._master = master
        self._envelope = envelope
        self._scheduler = scheduler
        self._on_state_changed = on_state_changed
        self._on_idle = on_idle

    def play(self, track: Track) -> bool:
        """
        Start a track with a fade-in (if enabled) and gapless looping.

        Returns:
            True if playback started
        """
        if track.state in (PlaybackState.STARTING, PlaybackState.PLAYING):
            return False
        if track.state is PlaybackState.STOPPING:
            logger.debug("Restarting %s during fade-out", track.name)
            self._teardown(track)

        track.state = PlaybackState.STARTING
        try:
            stage = self._context.create_gain(0.0, label=track.name)
            stage.connect(self._master.input)
            track.gain_stage = stage
            self._envelope.fade_in(stage, track.volume, track.effective_fade_duration)
            first = self._scheduler.start(track, self._context.current_time)
        except AudioRoutingFailure as e:
            logger.warning("Cannot play %s: %s", track.name, e)
            self._teardown(track)
            return False
        except SchedulingConflict as e:
            logger.error("Scheduling conflict starting %s: %s", track.name, e)
            self._teardown(track)
            return False

        if first is None:
            logger.warning("Cannot play %s: audio output refused the segment", track.name)
            self._teardown(track)
            return False

        self._set_state(track, PlaybackState.PLAYING)
        logger.info("Playing %s (loop=%s, fade=%.2fs)", track.name, track.loop_enabled, track.effective_fade_duration)
        return True

    def stop(self, track: Track) -> bool:
        """
        Fade a track out (if enabled) and tear it down afterwards.

        Returns:
            True if a stop was initiated, False if already idle or stopping
        """
        if track.state in (PlaybackState.IDLE, PlaybackState.STOPPING):
            return False
        if track.gain_stage is None:
            self._teardown(track)
            return True

        self._set_state(track, PlaybackState.STOPPING)
        self._scheduler.cancel_rearm(track)
        handle = self._envelope.fade_out(
            track.gain_stage,
            track.effective_fade_duration,
            partial(self._fade_out_done, track)
        )
        if track.state is PlaybackState.STOPPING:
            track.pending_fade_out = handle
        logger.info("Stopping %s", track.name)
        return True

    def set_volume(self, track: Track, volume: float) -> float:
        """
        Update the track volume; a live fade-in keeps running and only its
        destination moves.

        Returns:
            The clamped volume
        """
        volume = min(1.0, max(0.0, float(volume)))
        track.volume = volume
        if track.state is PlaybackState.PLAYING and track.gain_stage is not None:
            track.gain_stage.retarget(volume, self._context.current_time)
        return volume

    def set_loop_enabled(self, track: Track, enabled: bool) -> None:
        track.loop_enabled = bool(enabled)
        self._scheduler.update_loop(track)

    def finish(self, track: Track) -> None:
        """Natural end of a non-looping track."""
        if track.state is PlaybackState.PLAYING:
            self._teardown(track)

    def abort(self, track: Track) -> None:
        """Tear down immediately, without a fade. Idempotent."""
        self._teardown(track)

    def _fade_out_done(self, track: Track) -> None:
        track.pending_fade_out = None
        if track.state is PlaybackState.STOPPING:
            self._teardown(track)

    def _teardown(self, track: Track) -> None:
        """Release every playback resource and settle in Idle."""
        if track.pending_fade_out is not None:
            self._timers.cancel(track.pending_fade_out)
            track.pending_fade_out = None
        self._scheduler.disarm(track)
        if track.gain_stage is not None:
            try:
                track.gain_stage.disconnect()
            except Exception as e:
                logger.warning("Error releasing gain stage of %s: %s", track.name, e)
            track.gain_stage = None
        if track.state is PlaybackState.IDLE:
            return
        self._set_state(track, PlaybackState.IDLE)
        logger.debug("%s idle", track.name)
        if self._on_idle is not None:
            self._on_idle(track)

    def _set_state(self, track: Track, state: PlaybackState) -> None:
        previous = track.state
        track.state = state
        if previous is state or self._on_state_changed is None:
            return
        # A failed start never became visible
        if state is PlaybackState.STARTING or previous is PlaybackState.STARTING and state is PlaybackState.IDLE:
            return
        self._on_state_changed(track, state)
