"""
Sound card output for Loopdeck.
Drives an AudioContext from a sounddevice stream with low-latency callbacks.
"""
from __future__ import annotations
import logging
from typing import Optional
import numpy as np
import sounddevice as sd

from .config import ENGINE_CONFIG
from .graph import AudioContext

logger = logging.getLogger("Loopdeck")


class DeviceAudioContext(AudioContext):
    """
    Audio context rendered by a sounddevice output stream.

    The PortAudio thread pulls blocks through `render()`; the context lock
    keeps those pulls from interleaving with graph changes made on the
    scheduling thread.
    """

    def __init__(
        self,
        samplerate: int = ENGINE_CONFIG.samplerate,
        channels: int = ENGINE_CONFIG.channels,
        blocksize: int = ENGINE_CONFIG.blocksize,
        device: Optional[int | str] = None
    ) -> None:
        super().__init__(samplerate, channels)
        self.blocksize = blocksize
        self.device = device
        self._stream: Optional[sd.OutputStream] = None

    @property
    def running(self) -> bool:
        """False once the stream has stopped, e.g. after a callback failure."""
        return not self.closed and self._stream is not None and self._stream.active

    def open(self) -> bool:
        """
        Open and start the output stream. A stream that stopped on its own
        is closed and replaced.

        Returns:
            True if the stream is running
        """
        if self.closed:
            return False
        if self._stream is not None:
            if self._stream.active:
                return True
            logger.warning("Audio output stopped, reopening")
            self._close_stream()

        def playback_callback(
            outdata: np.ndarray,
            frames: int,
            time: object,
            status: sd.CallbackFlags
        ) -> None:
            """Real-time audio callback."""
            try:
                if status and status.output_underflow:
                    logger.debug("Output underflow")
                outdata[:] = self.render(frames)
            except Exception as e:
                logger.error("Playback callback error: %s", e, exc_info=True)
                raise sd.CallbackStop()

        try:
            self._stream = sd.OutputStream(
                samplerate=self.samplerate,
                channels=self.channels,
                blocksize=self.blocksize,
                dtype='float32',
                device=self.device,
                callback=playback_callback
            )
            self._stream.start()
            logger.info("Audio output started at %d Hz", self.samplerate)
            return True
        except Exception as e:
            logger.error("Failed to start audio output: %s", e, exc_info=True)
            self._stream = None
            return False

    def close(self) -> None:
        self._close_stream()
        super().close()

    def _close_stream(self) -> None:
        if self._stream is None:
            return
        try:
            self._stream.stop()
            self._stream.close()
        except Exception as e:
            logger.warning("Error stopping stream: %s", e)
        self._stream = None
