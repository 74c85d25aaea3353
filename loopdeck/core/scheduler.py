"""
Loop scheduler: gapless looping by double-buffered segment arming.

Segment k of a track always starts at exactly
``timeline_origin + k * buffer.duration`` on the audio clock. Timers only
decide when to *look* at the timeline again; they never decide where on the
timeline a segment goes, so wake-up jitter cannot accumulate into drift.
"""
from __future__ import annotations
import logging
from functools import partial
from typing import Callable, Optional

from .config import ENGINE_CONFIG, EngineConfig, PlaybackState
from .errors import AudioRoutingFailure, SchedulingConflict
from .graph import AudioContext, BufferSegment
from .timers import TimerQueue
from .track import Track

logger = logging.getLogger("Loopdeck")

TrackCallback = Callable[[Track], None]

_ARMABLE = (PlaybackState.STARTING, PlaybackState.PLAYING)


class LoopScheduler:
    """
    Keeps at most two segments alive per track: the audible one and the
    next one, armed at least `rearm_lead_time` before it has to start.
    """
    __slots__ = ('_context', '_timers', '_lead', '_on_finished', '_on_conflict')

    def __init__(
        self,
        context: AudioContext,
        timers: TimerQueue,
        config: EngineConfig = ENGINE_CONFIG,
        on_finished: Optional[TrackCallback] = None,
        on_conflict: Optional[TrackCallback] = None
    ) -> None:
        """
        Args:
            context: Audio context whose clock is the timeline
            timers: Deferred callbacks used as wake-ups
            config: Engine configuration (lead time)
            on_finished: Called when a non-looping track plays out naturally
            on_conflict: Called after a scheduling conflict was detected
                during a wake-up, to force the track to Idle
        """
        self._context = context
        self._timers = timers
        self._lead = config.rearm_lead_time
        self._on_finished = on_finished
        self._on_conflict = on_conflict

    @property
    def lead_time(self) -> float:
        return self._lead

    def start(self, track: Track, at_time: float) -> Optional[BufferSegment]:
        """
        Begin a fresh timeline at `at_time` and arm as far ahead as allowed.

        Returns:
            The first segment, or None if the audio context refused it

        Raises:
            SchedulingConflict: if the track still holds live segments
        """
        if len(track.slots):
            raise SchedulingConflict(f"{track.name}: start while {len(track.slots)} segment(s) are live")
        self.cancel_rearm(track)
        track.timeline_origin = at_time
        track.segments_armed = 0
        self._pump(track)
        return track.slots.newest()

    def arm(self, track: Track, at_time: float) -> Optional[BufferSegment]:
        """
        Create a segment of `track.buffer` starting at absolute `at_time`.

        The new segment takes the older of the track's two slots. Whatever
        sat there must already have finished playing.

        Returns:
            The armed segment, or None if the audio context refused it

        Raises:
            SchedulingConflict: if the slot being reused is still audible,
                or the track has no gain stage
        """
        if track.gain_stage is None:
            raise SchedulingConflict(f"{track.name}: cannot arm without a gain stage")
        oldest = track.slots.peek_oldest()
        if oldest is not None and not oldest.is_finished():
            raise SchedulingConflict(
                f"{track.name}: arming at {at_time:.4f}s would evict a segment playing until {oldest.end_time:.4f}s"
            )

        segment = self._context.create_segment(track.buffer, label=f"{track.name}#{track.segments_armed}")
        try:
            segment.connect(track.gain_stage)
            segment.start(at_time)
        except AudioRoutingFailure as e:
            logger.debug("Arming %s skipped: %s", track.name, e)
            segment.release()
            return None

        if not track.loop_enabled:
            segment.on_ended = partial(self._segment_ended, track, segment)

        evicted = track.slots.install(segment)
        if evicted is not None:
            evicted.release()
        logger.debug("Armed %s at %.4fs", segment.label, at_time)
        return segment

    def cancel_rearm(self, track: Track) -> None:
        """Cancel the pending wake-up that would arm the next segment."""
        if track.pending_rearm is not None:
            self._timers.cancel(track.pending_rearm)
            track.pending_rearm = None

    def disarm(self, track: Track) -> None:
        """
        Cancel pending wake-ups, then stop and release every segment.
        Safe from any state and safe to call twice.
        """
        self.cancel_rearm(track)
        for segment in track.slots.take_all():
            try:
                segment.release()
            except Exception as e:
                logger.warning("Error releasing segment %s: %s", segment.label, e)

    def update_loop(self, track: Track) -> None:
        """
        Apply a loop on/off change to a track that is already playing.

        Turning looping off lets the newest segment play out and end the
        track; turning it on resumes arming from the current timeline.
        """
        if track.state not in _ARMABLE:
            return
        newest = track.slots.newest()
        if track.loop_enabled:
            if newest is not None:
                newest.on_ended = None
            self._pump(track)
        else:
            self.cancel_rearm(track)
            if newest is not None and not newest.released:
                newest.on_ended = partial(self._segment_ended, track, newest)

    def _pump(self, track: Track) -> None:
        """Arm every segment that is due now; leave a wake-up for the next."""
        while track.state in _ARMABLE and track.gain_stage is not None:
            if track.segments_armed > 0:
                if not track.loop_enabled:
                    return
                wait = self._seconds_until_due(track)
                if wait > 0:
                    track.pending_rearm = self._timers.call_later(
                        wait, partial(self._rearm_due, track), label=f"rearm {track.name}"
                    )
                    return
                self._skip_elapsed(track)
            if self.arm(track, track.scheduled_position) is None:
                return
            track.segments_armed += 1

    def _seconds_until_due(self, track: Track) -> float:
        """
        Audio-clock delay until the next segment may be armed: within the
        lead window of its start, and not before its slot has played out.
        """
        ctx = self._context
        due_frame = ctx.time_to_frame(track.scheduled_position - self._lead)
        oldest = track.slots.peek_oldest()
        if oldest is not None and not oldest.released and oldest.end_frame is not None:
            due_frame = max(due_frame, oldest.end_frame)
        return (due_frame - ctx.current_frame) / ctx.samplerate

    def _skip_elapsed(self, track: Track) -> None:
        """Jump over loop iterations that ended entirely while we were asleep."""
        duration = track.duration
        behind = int((self._context.current_time - track.scheduled_position) // duration)
        if behind > 0:
            logger.warning("%s: wake-up %d loop(s) late, skipping ahead", track.name, behind)
            track.segments_armed += behind

    def _rearm_due(self, track: Track) -> None:
        track.pending_rearm = None
        if track.state is not PlaybackState.PLAYING:
            return
        try:
            self._pump(track)
        except SchedulingConflict as e:
            self._conflict(track, e)

    def _segment_ended(self, track: Track, segment: BufferSegment) -> None:
        if track.state is not PlaybackState.PLAYING or segment not in track.slots:
            return
        if segment is not track.slots.newest():
            return
        logger.info("%s finished playing", track.name)
        self.disarm(track)
        if self._on_finished is not None:
            self._on_finished(track)

    def _conflict(self, track: Track, error: SchedulingConflict) -> None:
        logger.error("Scheduling conflict: %s", error)
        self.disarm(track)
        if self._on_conflict is not None:
            self._on_conflict(track)
