"""
Tests for Engine: track lifecycle, settings, events and error handling.
"""
import pytest
import numpy as np

from loopdeck.core.config import PlaybackState
from loopdeck.core.engine import Engine
from loopdeck.core.errors import InvalidTrackReference
from loopdeck.core.graph import AudioContext
from loopdeck.core.timers import TimerQueue
from loopdeck.core.types import TrackSettingsEvent, TrackStateEvent


class StoppedOutputContext(AudioContext):
    """A context whose output has stopped: open, but not rendering."""

    @property
    def running(self) -> bool:
        return False


def _states(events, track_id=None):
    return [
        payload.state for name, payload in events
        if name == 'state_changed' and (track_id is None or payload.track_id == track_id)
    ]


def _occupy_slots(engine, track):
    """Fill both slots of a playing track with segments that never got a start time."""
    stuck = []
    for _ in range(2):
        segment = engine.context.create_segment(track.buffer, label="stuck")
        segment.connect(track.gain_stage)
        evicted = track.slots.install(segment)
        if evicted is not None:
            evicted.release()
        stuck.append(segment)
    return stuck


class TestTrackManagement:
    """Tests for adding, looking up and removing tracks."""

    def test_add_track(self, engine, make_loaded, recorder):
        track = engine.add_track(make_loaded(name="Rain"))
        assert track.id in engine
        assert len(engine) == 1
        assert engine.get_track(track.id) is track
        assert track.state is PlaybackState.IDLE
        assert ('track_added', track.id) in recorder

    def test_add_track_keeps_given_id(self, engine, make_loaded):
        track = engine.add_track(make_loaded(), track_id="saved-1")
        assert track.id == "saved-1"

    def test_duplicate_id_rejected(self, engine, make_loaded):
        engine.add_track(make_loaded(), track_id="same")
        with pytest.raises(ValueError):
            engine.add_track(make_loaded(), track_id="same")

    def test_empty_buffer_rejected(self, engine, make_loaded):
        with pytest.raises(ValueError):
            engine.add_track(make_loaded(seconds=0.0))

    def test_samplerate_mismatch_rejected(self, engine, make_loaded):
        with pytest.raises(ValueError):
            engine.add_track(make_loaded(samplerate=2000))

    def test_volume_clamped_on_add(self, engine, make_loaded):
        track = engine.add_track(make_loaded(volume=3.0))
        assert track.volume == 1.0

    def test_unknown_id_raises(self, engine):
        with pytest.raises(InvalidTrackReference) as exc_info:
            engine.play("missing")
        assert exc_info.value.track_id == "missing"
        # Callers that only know dict semantics still catch it
        assert isinstance(exc_info.value, KeyError)

    @pytest.mark.parametrize("operation", ["stop", "toggle", "remove_track", "is_playing"])
    def test_unknown_id_raises_everywhere(self, engine, operation):
        with pytest.raises(InvalidTrackReference):
            getattr(engine, operation)("missing")

    def test_remove_idle_track(self, engine, make_loaded, recorder):
        track = engine.add_track(make_loaded())
        engine.remove_track(track.id)
        assert track.id not in engine
        assert ('track_removed', track.id) in recorder

    def test_remove_playing_track_fades_then_releases(self, engine, make_loaded, advance, recorder):
        track = engine.add_track(make_loaded(fade_enabled=True, fade_duration=0.5))
        engine.play(track.id)
        advance(engine, 1.0)

        engine.remove_track(track.id)
        assert track.id in engine
        assert track.state is PlaybackState.STOPPING
        assert not engine.play(track.id)

        advance(engine, 1.0)
        assert track.id not in engine
        assert _states(recorder) == [PlaybackState.PLAYING, PlaybackState.STOPPING, PlaybackState.IDLE]
        assert recorder[-1] == ('track_removed', track.id)
        assert engine.context.active_segment_count == 0

    def test_clear(self, engine, make_loaded, advance):
        first = engine.add_track(make_loaded())
        engine.add_track(make_loaded())
        engine.play(first.id)
        engine.clear()
        advance(engine, 0.1)
        assert len(engine) == 0


class TestPlayback:
    """Tests for the per-track lifecycle."""

    def test_play_and_stop_without_fade(self, engine, make_loaded, recorder):
        track = engine.add_track(make_loaded())
        assert engine.play(track.id)
        assert engine.is_playing(track.id)
        assert engine.stop(track.id)
        assert track.state is PlaybackState.IDLE
        assert _states(recorder) == [PlaybackState.PLAYING, PlaybackState.STOPPING, PlaybackState.IDLE]

    def test_play_while_playing_is_noop(self, engine, make_loaded, recorder):
        track = engine.add_track(make_loaded())
        assert engine.play(track.id)
        assert not engine.play(track.id)
        assert len(track.slots) == 1
        assert _states(recorder) == [PlaybackState.PLAYING]

    def test_stop_is_idempotent(self, engine, make_loaded, advance, recorder):
        track = engine.add_track(make_loaded(fade_enabled=True, fade_duration=0.5))
        assert not engine.stop(track.id)

        engine.play(track.id)
        advance(engine, 0.2)
        assert engine.stop(track.id)
        assert not engine.stop(track.id)
        advance(engine, 1.0)
        assert not engine.stop(track.id)
        assert _states(recorder).count(PlaybackState.STOPPING) == 1

    def test_stop_fades_out_then_goes_idle(self, engine, make_loaded, advance):
        track = engine.add_track(make_loaded(fade_enabled=True, fade_duration=0.2))
        engine.play(track.id)
        advance(engine, 1.0)

        engine.stop(track.id)
        out = advance(engine, 0.2)[:, 0]
        assert track.state is PlaybackState.STOPPING
        gains = out / np.tile(track.buffer.data, 8)[1000:1200]
        assert np.all(np.diff(gains) <= 1e-5)
        assert gains[-1] < 0.01

        advance(engine, 0.2)
        assert track.state is PlaybackState.IDLE
        assert track.gain_stage is None
        assert len(track.slots) == 0

    def test_non_loop_track_finishes_after_one_pass(self, engine, make_loaded, advance, recorder):
        track = engine.add_track(make_loaded(seconds=0.5, loop_enabled=False))
        idle_at = []

        def on_state(event):
            if event.state is PlaybackState.IDLE:
                idle_at.append(engine.context.current_frame)

        engine.on('state_changed', on_state)
        engine.play(track.id)

        advance(engine, 0.49)
        assert track.state is PlaybackState.PLAYING
        out = advance(engine, 0.51)
        assert track.state is PlaybackState.IDLE
        assert idle_at == [500]
        assert np.allclose(out[10:], 0.0)
        # Natural completion goes straight to Idle
        assert _states(recorder) == [PlaybackState.PLAYING, PlaybackState.IDLE]

    def test_interrupted_fade_in_fades_out_from_partial_level(self, engine, make_loaded, advance):
        track = engine.add_track(make_loaded(seconds=0.5, volume=0.7, fade_enabled=True, fade_duration=2.0))
        engine.play(track.id)
        advance(engine, 1.0)

        engine.stop(track.id)
        _, start_value, end_time, end_value = track.gain_stage.ramp
        assert np.isclose(start_value, 0.35)
        assert np.isclose(end_time, 3.0)
        assert end_value == 0.0

    def test_play_during_fade_out_restarts_with_fade_in(self, engine, make_loaded, advance, recorder):
        track = engine.add_track(make_loaded(fade_enabled=True, fade_duration=1.0))
        engine.play(track.id)
        advance(engine, 1.5)
        engine.stop(track.id)
        advance(engine, 0.3)

        assert engine.toggle(track.id)
        assert track.state is PlaybackState.PLAYING
        assert np.isclose(track.gain_stage.value, 0.0)
        assert len(track.slots) <= 2
        assert np.isclose(track.timeline_origin, engine.context.current_time)

        # The old fade-out completion must not stop the new playback
        advance(engine, 2.0)
        assert track.state is PlaybackState.PLAYING
        assert _states(recorder) == [
            PlaybackState.PLAYING, PlaybackState.STOPPING, PlaybackState.IDLE, PlaybackState.PLAYING
        ]

    def test_conflict_at_wakeup_forces_idle(self, engine, make_loaded, advance, recorder):
        a = engine.add_track(make_loaded(signal=np.full(250, 0.2)))
        b = engine.add_track(make_loaded(signal=np.full(250, 0.3)))
        engine.play(a.id)
        engine.play(b.id)
        advance(engine, 0.1)
        assert a.pending_rearm is not None

        stuck = _occupy_slots(engine, a)
        out = advance(engine, 0.5)

        assert a.state is PlaybackState.IDLE
        assert _states(recorder, a.id) == [PlaybackState.PLAYING, PlaybackState.IDLE]
        assert a.gain_stage is None
        assert len(a.slots) == 0
        assert a.pending_rearm is None
        assert all(segment.released for segment in stuck)

        assert b.state is PlaybackState.PLAYING
        assert np.allclose(out[-100:], 0.3)
        assert engine.context.active_segment_count == len(b.slots)

    def test_toggle(self, engine, make_loaded):
        track = engine.add_track(make_loaded())
        assert engine.toggle(track.id)
        assert not engine.toggle(track.id)
        assert track.state is PlaybackState.IDLE

    def test_stop_all(self, engine, make_loaded):
        tracks = [engine.add_track(make_loaded()) for _ in range(3)]
        engine.play(tracks[0].id)
        engine.play(tracks[2].id)
        assert engine.stop_all() == 2
        assert engine.active_tracks == []

    def test_tracks_mix_independently(self, engine, make_loaded, advance):
        a = engine.add_track(make_loaded(signal=np.full(250, 0.2)))
        b = engine.add_track(make_loaded(signal=np.full(250, 0.3)))
        engine.play(a.id)
        engine.play(b.id)
        out = advance(engine, 0.5)
        assert np.allclose(out, 0.5)

        engine.stop(a.id)
        out = advance(engine, 0.5)
        assert np.allclose(out, 0.3)


class TestSettings:
    """Tests for live setting changes."""

    def test_volume_change_during_fade_in_keeps_ramp_timing(self, engine, make_loaded, advance):
        track = engine.add_track(make_loaded(volume=0.7, fade_enabled=True, fade_duration=2.0))
        engine.play(track.id)
        advance(engine, 0.5)

        engine.set_volume(track.id, 0.3)
        assert track.gain_stage.ramp == (0.0, 0.0, 2.0, 0.3)

    def test_volume_change_after_fade_is_immediate(self, engine, make_loaded, advance):
        track = engine.add_track(make_loaded(signal=np.full(250, 0.5)))
        engine.play(track.id)
        advance(engine, 0.1)

        assert engine.set_volume(track.id, 0.5) == 0.5
        out = advance(engine, 0.1)
        assert np.allclose(out, 0.25)

    def test_volume_clamped(self, engine, make_loaded):
        track = engine.add_track(make_loaded())
        assert engine.set_volume(track.id, -1.0) == 0.0
        assert engine.set_volume(track.id, 2.0) == 1.0

    def test_idle_volume_change_applies_on_next_play(self, engine, make_loaded):
        track = engine.add_track(make_loaded())
        engine.set_volume(track.id, 0.4)
        engine.play(track.id)
        assert np.isclose(track.gain_stage.value, 0.4)

    def test_settings_events(self, engine, make_loaded, recorder):
        track = engine.add_track(make_loaded())
        engine.set_fade_enabled(track.id, True)
        engine.set_fade_duration(track.id, 3.5)
        engine.set_loop_enabled(track.id, False)

        settings = [payload for name, payload in recorder if name == 'settings_changed']
        assert len(settings) == 3
        assert all(isinstance(e, TrackSettingsEvent) for e in settings)
        last = settings[-1].metadata
        assert last.fade_enabled
        assert last.fade_duration == 3.5
        assert not last.loop_enabled

    def test_negative_fade_duration_rejected(self, engine, make_loaded):
        track = engine.add_track(make_loaded())
        with pytest.raises(ValueError):
            engine.set_fade_duration(track.id, -1.0)

    def test_disabled_fade_ignores_duration(self, engine, make_loaded):
        track = engine.add_track(make_loaded(fade_enabled=False, fade_duration=5.0))
        engine.play(track.id)
        engine.stop(track.id)
        assert track.state is PlaybackState.IDLE


class TestMasterVolume:
    """Tests for the shared master gain."""

    def test_scales_output_instantly(self, engine, make_loaded, advance, recorder):
        track = engine.add_track(make_loaded(signal=np.full(250, 0.8)))
        engine.play(track.id)
        engine.set_master_volume(0.5)
        assert np.allclose(advance(engine, 0.1), 0.4)
        assert ('master_volume_changed', 0.5) in recorder

    def test_clamped(self, engine):
        assert engine.set_master_volume(1.5) == 1.0
        assert engine.master_volume == 1.0
        assert engine.set_master_volume(-0.5) == 0.0

    def test_applies_while_idle(self, engine):
        engine.set_master_volume(0.3)
        assert np.isclose(engine.master.input.value, 0.3)

    def test_silent_update_applies_without_event(self, engine, recorder):
        engine.set_master_volume(0.6, notify=False)
        assert np.isclose(engine.master.input.value, 0.6)
        assert not any(name == 'master_volume_changed' for name, _ in recorder)


class TestEvents:
    """Tests for the event registry."""

    def test_state_event_payload(self, engine, make_loaded, recorder):
        track = engine.add_track(make_loaded())
        engine.play(track.id)
        events = [p for n, p in recorder if n == 'state_changed']
        assert events == [TrackStateEvent(track.id, PlaybackState.PLAYING)]

    def test_failing_callback_does_not_break_playback(self, engine, make_loaded):
        def boom(event):
            raise RuntimeError("listener failure")

        engine.on('state_changed', boom)
        track = engine.add_track(make_loaded())
        assert engine.play(track.id)
        assert track.state is PlaybackState.PLAYING

    def test_off(self, engine, make_loaded):
        seen = []
        engine.on('track_added', seen.append)
        engine.off('track_added', seen.append)
        engine.add_track(make_loaded())
        assert seen == []

    def test_unknown_event_is_ignored(self, engine):
        engine.on('no_such_event', lambda: None)
        engine.off('no_such_event', lambda: None)


class TestLifecycle:
    """Tests for engine start and close."""

    def test_start_offline_context(self, engine):
        assert engine.start()

    def test_close_stops_everything(self, engine, make_loaded):
        track = engine.add_track(make_loaded(fade_enabled=True, fade_duration=1.0))
        engine.play(track.id)
        engine.close()

        assert engine.closed
        assert track.state is PlaybackState.IDLE
        assert engine.context.closed
        assert engine.context.active_segment_count == 0
        assert not engine.play(track.id)
        assert not engine.start()
        assert engine.poll() == 0

    def test_close_is_idempotent(self, engine):
        engine.close()
        engine.close()

    def test_context_manager(self, context, timers, config, make_loaded):
        with Engine(context=context, timers=timers, config=config) as eng:
            track = eng.add_track(make_loaded())
            eng.play(track.id)
        assert eng.closed
        assert track.state is PlaybackState.IDLE

    def test_faded_stop_finishes_when_audio_clock_stalls(self, config, clock, make_loaded):
        # The context never renders; only the timer clock moves
        context = AudioContext(config.samplerate, config.channels)
        eng = Engine(context=context, timers=TimerQueue(clock=clock), config=config)
        removed = []
        eng.on('track_removed', removed.append)
        track = eng.add_track(make_loaded(fade_enabled=True, fade_duration=0.5))

        eng.play(track.id)
        eng.stop(track.id)
        eng.remove_track(track.id)
        for _ in range(10):
            clock.advance(0.1)
            eng.poll()

        assert track.state is PlaybackState.IDLE
        assert track.id not in eng
        assert removed == [track.id]
        assert context.active_segment_count == 0
        eng.close()

    def test_play_without_running_output_fails(self, config, timers, make_loaded):
        eng = Engine(context=StoppedOutputContext(config.samplerate, config.channels), timers=timers, config=config)
        track = eng.add_track(make_loaded())
        assert not eng.play(track.id)
        assert not eng.toggle(track.id)
        assert track.state is PlaybackState.IDLE
        assert track.gain_stage is None
        eng.close()

    def test_play_on_closed_context_fails_cleanly(self, engine, make_loaded, recorder):
        track = engine.add_track(make_loaded())
        engine.context.close()
        assert not engine.play(track.id)
        assert track.state is PlaybackState.IDLE
        assert track.gain_stage is None
        assert _states(recorder) == []
