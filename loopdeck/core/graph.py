"""
Audio graph for Loopdeck.

A minimal pull-based node graph:
buffer segments feed gain stages, gain stages feed the master stage, the
master stage feeds the context destination. The context owns a sample-frame
clock that only advances as audio is rendered, which makes it the single
authority for scheduling.

`AudioContext` renders offline (the caller pulls blocks with `render`);
`loopdeck.core.device.DeviceAudioContext` pulls them from the sound card.
"""
from __future__ import annotations
import logging
import threading
from collections import deque
from typing import Optional
import numpy as np

from .config import ENGINE_CONFIG
from .errors import AudioRoutingFailure
from .types import AudioArray, AudioBuffer, EndedCallback, GainArray

logger = logging.getLogger("Loopdeck")


class AudioNode:
    """Base node: one output connection, any number of inputs."""
    __slots__ = ('_context', '_inputs', '_output', 'label')

    def __init__(self, context: "AudioContext", label: str = "") -> None:
        self._context = context
        self._inputs: list[AudioNode] = []
        self._output: Optional[AudioNode] = None
        self.label = label

    @property
    def context(self) -> "AudioContext":
        return self._context

    @property
    def is_connected(self) -> bool:
        return self._output is not None

    @property
    def input_count(self) -> int:
        return len(self._inputs)

    def connect(self, target: "AudioNode") -> None:
        """
        Route this node's output into `target`.

        Raises:
            AudioRoutingFailure: if the context is closed or the target
                belongs to another context
        """
        with self._context.lock:
            if self._context.closed:
                raise AudioRoutingFailure(f"Cannot connect {self!r}: context is closed")
            if target._context is not self._context:
                raise AudioRoutingFailure(f"Cannot connect {self!r} across contexts")
            if self._output is target:
                return
            self._detach()
            target._inputs.append(self)
            self._output = target

    def disconnect(self) -> None:
        """Detach from the current output. No-op when unconnected."""
        with self._context.lock:
            self._detach()

    def _detach(self) -> None:
        if self._output is not None:
            try:
                self._output._inputs.remove(self)
            except ValueError:
                pass
            self._output = None

    def _render(self, start_frame: int, frames: int) -> Optional[AudioArray]:
        """Sum of all inputs for the block, or None when silent."""
        mixed: Optional[AudioArray] = None
        for node in list(self._inputs):
            block = node._render(start_frame, frames)
            if block is None:
                continue
            if mixed is None:
                mixed = block
            else:
                mixed += block
        return mixed


class Destination(AudioNode):
    """The context's output sink."""
    __slots__ = ()

    def __repr__(self) -> str:
        return f"<Destination inputs={len(self._inputs)}>"


class GainStage(AudioNode):
    """
    Gain node with linear automation.

    Automation holds one anchor point and at most one linear ramp leaving
    it. Cancelling scheduled values freezes the gain at its instantaneous
    value, so a ramp interrupted halfway never jumps.
    """
    __slots__ = ('_anchor_time', '_anchor_value', '_ramp_end_time', '_ramp_end_value')

    def __init__(self, context: "AudioContext", value: float = 1.0, label: str = "") -> None:
        super().__init__(context, label)
        self._anchor_time = context.current_time
        self._anchor_value = float(value)
        self._ramp_end_time: Optional[float] = None
        self._ramp_end_value: Optional[float] = None

    @property
    def value(self) -> float:
        """Instantaneous gain at the context's current time."""
        return self.value_at(self._context.current_time)

    @property
    def target(self) -> float:
        """Where the automation is heading (the ramp endpoint, if any)."""
        if self._ramp_end_value is not None:
            return self._ramp_end_value
        return self._anchor_value

    @property
    def ramp(self) -> Optional[tuple[float, float, float, float]]:
        """(start_time, start_value, end_time, end_value) of the pending ramp."""
        if self._ramp_end_time is None:
            return None
        return (self._anchor_time, self._anchor_value, self._ramp_end_time, self._ramp_end_value)

    def ramp_active(self, at: float) -> bool:
        """True while a ramp has not yet reached its endpoint."""
        return self._ramp_end_time is not None and self._ramp_end_time > at

    def value_at(self, when: float) -> float:
        """Gain the automation produces at audio-clock time `when`."""
        if self._ramp_end_time is None or when <= self._anchor_time:
            return self._anchor_value
        if when >= self._ramp_end_time:
            return self._ramp_end_value
        span = self._ramp_end_time - self._anchor_time
        progress = (when - self._anchor_time) / span
        return self._anchor_value + progress * (self._ramp_end_value - self._anchor_value)

    def set_value_at_time(self, value: float, when: float) -> None:
        """Hold `value` from `when` on, dropping any ramp."""
        with self._context.lock:
            self._anchor_time = when
            self._anchor_value = float(value)
            self._ramp_end_time = None
            self._ramp_end_value = None

    def linear_ramp_to_value_at_time(self, value: float, end_time: float) -> None:
        """Ramp linearly from the anchor point to `value`, arriving at `end_time`."""
        with self._context.lock:
            if end_time <= self._anchor_time:
                self.set_value_at_time(value, end_time)
                return
            self._ramp_end_time = end_time
            self._ramp_end_value = float(value)

    def cancel_scheduled_values(self, when: float) -> None:
        """Drop automation after `when`, holding the value reached at `when`."""
        with self._context.lock:
            if self._ramp_end_time is None:
                return
            held = self.value_at(when)
            self.set_value_at_time(held, when)

    def retarget(self, value: float, at: float) -> None:
        """
        Change where the gain is heading without restarting the ramp.

        An in-flight ramp keeps its start point and end time; only its end
        value moves. With no ramp in flight the value is set immediately.
        """
        with self._context.lock:
            if self.ramp_active(at):
                self._ramp_end_value = float(value)
            else:
                self.set_value_at_time(value, at)

    def gains(self, start_frame: int, frames: int) -> GainArray:
        """Per-sample gain curve for a render block."""
        sr = self._context.samplerate
        if self._ramp_end_time is None:
            return np.full(frames, self._anchor_value, dtype=np.float32)
        times = (start_frame + np.arange(frames, dtype=np.float64)) / sr
        span = self._ramp_end_time - self._anchor_time
        progress = np.clip((times - self._anchor_time) / span, 0.0, 1.0)
        curve = self._anchor_value + progress * (self._ramp_end_value - self._anchor_value)
        return curve.astype(np.float32)

    def _render(self, start_frame: int, frames: int) -> Optional[AudioArray]:
        mixed = super()._render(start_frame, frames)
        if mixed is None:
            return None
        mixed *= self.gains(start_frame, frames)[:, np.newaxis]
        return mixed

    def __repr__(self) -> str:
        return f"<GainStage {self.label} value={self._anchor_value:.3f} target={self.target:.3f}>"


class BufferSegment(AudioNode):
    """
    One scheduled, one-shot playback of an audio buffer.

    A segment starts at an absolute frame on the context clock and plays the
    buffer once. Starting it a second time is an error.
    """
    __slots__ = ('buffer', 'on_ended', '_start_frame', '_stop_frame', '_ended_notified', '_released')

    def __init__(self, context: "AudioContext", buffer: AudioBuffer, label: str = "") -> None:
        super().__init__(context, label)
        self.buffer = buffer
        self.on_ended: Optional[EndedCallback] = None
        self._start_frame: Optional[int] = None
        self._stop_frame: Optional[int] = None
        self._ended_notified = False
        self._released = False

    @property
    def started(self) -> bool:
        return self._start_frame is not None

    @property
    def released(self) -> bool:
        return self._released

    @property
    def start_time(self) -> Optional[float]:
        if self._start_frame is None:
            return None
        return self._start_frame / self._context.samplerate

    @property
    def end_frame(self) -> Optional[int]:
        """Frame at which playback ends, natural or forced."""
        if self._start_frame is None:
            return None
        natural = self._start_frame + self.buffer.frames
        if self._stop_frame is not None:
            return min(natural, self._stop_frame)
        return natural

    @property
    def end_time(self) -> Optional[float]:
        end = self.end_frame
        return None if end is None else end / self._context.samplerate

    def is_finished(self, at_frame: Optional[int] = None) -> bool:
        """True once the segment can no longer produce sound."""
        if self._released:
            return True
        end = self.end_frame
        if end is None:
            return self._stop_frame is not None
        if at_frame is None:
            at_frame = self._context.current_frame
        return end <= at_frame

    def start(self, when: float) -> None:
        """
        Schedule playback at absolute audio-clock time `when`.

        A start time already in the past keeps its timeline position: the
        part of the buffer that should have played is skipped.

        Raises:
            AudioRoutingFailure: if the context is closed, or the segment
                was already started or released
        """
        with self._context.lock:
            if self._context.closed:
                raise AudioRoutingFailure("Cannot start segment: context is closed")
            if self._start_frame is not None or self._released:
                raise AudioRoutingFailure(f"Segment {self.label} cannot be started twice")
            self._start_frame = self._context.time_to_frame(when)
            self._context._register(self)

    def stop(self, when: Optional[float] = None) -> None:
        """Cut playback at `when` (default: now). Safe to call repeatedly."""
        with self._context.lock:
            frame = self._context.current_frame if when is None else self._context.time_to_frame(when)
            if self._stop_frame is None or frame < self._stop_frame:
                self._stop_frame = frame

    def release(self) -> None:
        """Stop, disconnect and forget the segment. Idempotent."""
        with self._context.lock:
            if self._released:
                return
            self.stop()
            self._detach()
            self._released = True
            self.on_ended = None
            self._context._unregister(self)

    def _render(self, start_frame: int, frames: int) -> Optional[AudioArray]:
        if self._released or self._start_frame is None:
            return None
        lo = max(self._start_frame, start_frame)
        hi = min(self.end_frame, start_frame + frames)
        if hi <= lo:
            return None
        channels = self._context.channels
        out = np.zeros((frames, channels), dtype=np.float32)
        chunk = self.buffer.data[lo - self._start_frame:hi - self._start_frame]
        if chunk.ndim == 1:
            # Mono to all output channels
            out[lo - start_frame:hi - start_frame] = chunk[:, np.newaxis]
        elif chunk.shape[1] == 1:
            out[lo - start_frame:hi - start_frame] = chunk
        elif chunk.shape[1] >= channels:
            out[lo - start_frame:hi - start_frame] = chunk[:, :channels]
        else:
            out[lo - start_frame:hi - start_frame, :chunk.shape[1]] = chunk
        return out

    def __repr__(self) -> str:
        return f"<BufferSegment {self.label} start={self.start_time} end={self.end_time}>"


class AudioContext:
    """
    Offline audio context.

    The clock is the number of frames rendered so far; it only moves when
    `render()` is called. Natural-completion notifications are queued by the
    renderer and delivered on the caller's thread by `dispatch_ended()`.
    """

    def __init__(
        self,
        samplerate: int = ENGINE_CONFIG.samplerate,
        channels: int = ENGINE_CONFIG.channels
    ) -> None:
        if samplerate <= 0:
            raise ValueError(f"Invalid samplerate: {samplerate}")
        self.samplerate = samplerate
        self.channels = channels
        self.lock = threading.RLock()
        self._frame = 0
        self._closed = False
        self._segments: set[BufferSegment] = set()
        self._ended: deque[BufferSegment] = deque()
        self.destination = Destination(self, label="destination")

    @property
    def current_frame(self) -> int:
        return self._frame

    @property
    def current_time(self) -> float:
        """Audio-clock time in seconds."""
        return self._frame / self.samplerate

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def running(self) -> bool:
        """True while rendering can move the clock forward."""
        return not self._closed

    @property
    def active_segment_count(self) -> int:
        return len(self._segments)

    def time_to_frame(self, when: float) -> int:
        return int(round(when * self.samplerate))

    def open(self) -> bool:
        """Offline contexts are always ready to render."""
        return not self._closed

    def create_gain(self, value: float = 1.0, label: str = "") -> GainStage:
        return GainStage(self, value, label)

    def create_segment(self, buffer: AudioBuffer, label: str = "") -> BufferSegment:
        return BufferSegment(self, buffer, label)

    def render(self, frames: int) -> AudioArray:
        """
        Render the next block and advance the clock.

        Returns:
            float32 array of shape (frames, channels), clipped to [-1, 1]
        """
        with self.lock:
            start = self._frame
            mixed = self.destination._render(start, frames)
            if mixed is None:
                mixed = np.zeros((frames, self.channels), dtype=np.float32)
            else:
                # Prevent digital clipping
                np.clip(mixed, -1.0, 1.0, out=mixed)
            self._frame = start + frames
            self._collect_ended(self._frame)
        return mixed

    def dispatch_ended(self) -> int:
        """Deliver queued natural-completion notifications. Returns count."""
        delivered = 0
        while self._ended:
            segment = self._ended.popleft()
            callback = segment.on_ended
            if callback is None or segment.released:
                continue
            delivered += 1
            callback()
        return delivered

    def close(self) -> None:
        """Release every segment and refuse further routing."""
        with self.lock:
            for segment in list(self._segments):
                segment.release()
            self._ended.clear()
            self._closed = True

    def _register(self, segment: BufferSegment) -> None:
        self._segments.add(segment)

    def _unregister(self, segment: BufferSegment) -> None:
        self._segments.discard(segment)

    def _collect_ended(self, frame: int) -> None:
        for segment in list(self._segments):
            if segment._ended_notified or segment._start_frame is None:
                continue
            natural_end = segment._start_frame + segment.buffer.frames
            if segment._stop_frame is not None and segment._stop_frame < natural_end:
                continue
            if natural_end <= frame:
                segment._ended_notified = True
                self._ended.append(segment)

    def __enter__(self) -> "AudioContext":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

