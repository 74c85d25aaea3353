"""
Master bus: the one gain stage every track feeds into.
"""
from __future__ import annotations
import logging

from .config import ENGINE_CONFIG
from .graph import AudioContext, GainStage

logger = logging.getLogger("Loopdeck")


class MasterBus:
    """
    Shared output gain. Only `set_volume` ever changes it, and it changes
    instantly: master volume is never faded.
    """
    __slots__ = ('_context', '_stage')

    def __init__(self, context: AudioContext, volume: float = ENGINE_CONFIG.default_master_volume) -> None:
        self._context = context
        self._stage = context.create_gain(_clamp(volume), label="master")
        self._stage.connect(context.destination)

    @property
    def input(self) -> GainStage:
        """Node that track gain stages connect to."""
        return self._stage

    @property
    def volume(self) -> float:
        return self._stage.target

    def set_volume(self, volume: float) -> float:
        """
        Set master gain immediately.

        Args:
            volume: Gain in [0.0, 1.0]; out-of-range values are clamped

        Returns:
            The gain actually applied
        """
        volume = _clamp(volume)
        self._stage.set_value_at_time(volume, self._context.current_time)
        logger.debug("Master volume %.2f", volume)
        return volume


def _clamp(volume: float) -> float:
    return min(1.0, max(0.0, float(volume)))
