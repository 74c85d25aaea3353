"""
Pytest configuration and fixtures for Loopdeck tests.

Everything runs against the offline AudioContext: the audio clock only moves
when a test renders, and the timer queue reads that same clock, so wake-ups
happen exactly when the test polls.
"""
import pytest
import numpy as np
import soundfile as sf

from loopdeck.core.config import EngineConfig
from loopdeck.core.engine import Engine
from loopdeck.core.graph import AudioContext
from loopdeck.core.timers import TimerQueue
from loopdeck.core.types import AudioBuffer, LoadedTrack, TrackMetadata

# A low rate keeps offline rendering fast; 10 frames == 10 ms
TEST_CONFIG = EngineConfig(samplerate=1000, channels=2, blocksize=10)


class FakeClock:
    """Manually advanced time source for TimerQueue tests."""

    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def config() -> EngineConfig:
    return TEST_CONFIG


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def context() -> AudioContext:
    ctx = AudioContext(TEST_CONFIG.samplerate, TEST_CONFIG.channels)
    yield ctx
    ctx.close()


@pytest.fixture
def timers(context) -> TimerQueue:
    """Timer queue driven by the audio clock."""
    return TimerQueue(clock=lambda: context.current_time)


@pytest.fixture
def engine(context, timers) -> Engine:
    """Engine at full master volume so rendered output equals track output."""
    eng = Engine(context=context, timers=timers, config=TEST_CONFIG, master_volume=1.0)
    yield eng
    eng.close()


@pytest.fixture
def make_loaded():
    """
    Factory for LoadedTrack values.

    The default signal is a ramp of distinct positive values, so any gap or
    misplaced loop boundary shows up in the rendered output.
    """
    def _make(seconds=0.25, samplerate=TEST_CONFIG.samplerate, signal=None, **settings):
        frames = int(round(seconds * samplerate))
        if signal is None:
            signal = 0.25 + 0.5 * np.arange(frames, dtype=np.float32) / max(frames, 1)
        data = np.asarray(signal, dtype=np.float32)
        settings.setdefault("name", "Test Track")
        settings.setdefault("volume", 1.0)
        settings.setdefault("fade_enabled", False)
        return LoadedTrack(buffer=AudioBuffer(data, samplerate), metadata=TrackMetadata(**settings))
    return _make


@pytest.fixture
def advance():
    """
    Render `seconds` of audio in blocks, polling the engine after every
    `poll_every` blocks. Returns the rendered audio.
    """
    def _advance(engine, seconds, block=10, poll_every=1):
        ctx = engine.context
        remaining = ctx.time_to_frame(seconds)
        blocks = []
        count = 0
        while remaining > 0:
            n = min(block, remaining)
            blocks.append(ctx.render(n))
            remaining -= n
            count += 1
            if poll_every and count % poll_every == 0:
                engine.poll()
        if not blocks:
            return np.zeros((0, ctx.channels), dtype=np.float32)
        return np.concatenate(blocks)
    return _advance


@pytest.fixture
def recorder(engine):
    """Collects (event, payload) tuples from every engine event."""
    events = []
    for name in ('state_changed', 'settings_changed', 'track_added', 'track_removed', 'master_volume_changed'):
        engine.on(name, lambda payload, name=name: events.append((name, payload)))
    return events


@pytest.fixture
def wav_file(tmp_path):
    """Write a short stereo WAV and return its path."""
    def _write(name="rain_loop.wav", seconds=0.5, samplerate=TEST_CONFIG.samplerate):
        frames = int(seconds * samplerate)
        t = np.arange(frames, dtype=np.float32) / samplerate
        left = 0.5 * np.sin(2 * np.pi * 50 * t)
        right = 0.25 * np.sin(2 * np.pi * 100 * t)
        path = tmp_path / name
        sf.write(str(path), np.column_stack((left, right)).astype(np.float32), samplerate, subtype="FLOAT")
        return str(path)
    return _write
