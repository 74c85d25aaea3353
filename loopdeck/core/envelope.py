"""
Envelope controller: linear fade-in / fade-out ramps on gain stages.
"""
from __future__ import annotations
import logging
from typing import Optional

from .config import ENGINE_CONFIG, EngineConfig
from .graph import AudioContext, GainStage
from .timers import TimerHandle, TimerQueue
from .types import CompletionCallback

logger = logging.getLogger("Loopdeck")


class EnvelopeController:
    """
    Produces linear gain ramps against the audio clock.

    Every new ramp first clears pending automation on the stage, so rapid
    stop/start/stop sequences never leave two ramps fighting.
    """
    __slots__ = ('_context', '_timers', '_grace')

    def __init__(
        self,
        context: AudioContext,
        timers: TimerQueue,
        config: EngineConfig = ENGINE_CONFIG
    ) -> None:
        self._context = context
        self._timers = timers
        self._grace = max(0.1, config.fade_grace)

    @property
    def grace(self) -> float:
        """Extra wait after a fade-out before teardown is triggered."""
        return self._grace

    def fade_in(self, stage: GainStage, target_volume: float, duration: float) -> None:
        """
        Ramp `stage` from 0 to `target_volume` over `duration` seconds.

        Args:
            stage: Gain stage to automate
            target_volume: Gain reached at the end of the ramp
            duration: Ramp length in seconds; 0 jumps straight to the target
        """
        now = self._context.current_time
        stage.cancel_scheduled_values(now)
        if duration <= 0:
            stage.set_value_at_time(target_volume, now)
            return
        stage.set_value_at_time(0.0, now)
        stage.linear_ramp_to_value_at_time(target_volume, now + duration)
        logger.debug("Fade-in to %.2f over %.2fs", target_volume, duration)

    def fade_out(
        self,
        stage: GainStage,
        duration: float,
        on_complete: CompletionCallback
    ) -> Optional[TimerHandle]:
        """
        Ramp `stage` from its instantaneous gain down to 0.

        The ramp starts from whatever the gain is *right now*, so a fade-out
        that interrupts a fade-in continues smoothly from the partial level.
        `on_complete` is woken `duration + grace` seconds later; the wake-up
        checks the audio clock and sleeps again if the ramp has not finished.
        A clock that stopped moving (device gone, stream stopped) cannot
        finish the ramp, so completion then falls back to the timer clock.

        Returns:
            Handle of the pending completion wake-up, or None when
            `on_complete` already ran (duration 0)
        """
        now = self._context.current_time
        current = stage.value_at(now)
        stage.cancel_scheduled_values(now)
        stage.set_value_at_time(current, now)
        if duration <= 0:
            on_complete()
            return None

        end_time = now + duration
        stage.linear_ramp_to_value_at_time(0.0, end_time)
        logger.debug("Fade-out from %.3f over %.2fs", current, duration)

        handle: Optional[TimerHandle] = None
        last_seen = now

        def wake() -> None:
            nonlocal last_seen
            audio_now = self._context.current_time
            remaining = end_time - audio_now
            if remaining > 0:
                if self._context.running and audio_now > last_seen:
                    # Audio clock lags the timer clock; check again later
                    last_seen = audio_now
                    self._timers.reschedule(handle, remaining + self._grace)
                    return
                logger.warning("Audio clock stalled %.2fs before the end of a fade-out", remaining)
            on_complete()

        handle = self._timers.call_later(duration + self._grace, wake, label="fade-out")
        return handle
