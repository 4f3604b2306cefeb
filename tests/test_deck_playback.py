import sys, pathlib
import numpy as np
import pytest

# Ensure repository root is on path
sys.path.insert(0, str(pathlib.Path(__file__).resolve().parents[1]))

from console_engine.audio_clock import AudioClock
from console_engine.deck import Deck
from console_engine.deck_state_machine import PlaybackState
from console_engine.track import Track
from console_engine.voice import BufferVoice

SR = 44100


def make_track(seconds=10.0, sr=SR, freq=220.0, name="sine.wav"):
    t = np.arange(int(seconds * sr)) / sr
    mono = 0.5 * np.sin(2 * np.pi * freq * t)
    return Track.from_array(mono, sr, name=name)


class VoiceRecorder:
    """voice_factory that remembers every voice a deck creates"""
    def __init__(self):
        self.voices = []
    def __call__(self, *args, **kwargs):
        voice = BufferVoice(*args, **kwargs)
        self.voices.append(voice)
        return voice
    def live(self):
        return sum(1 for v in self.voices if v.active)


def make_deck(track=None, **kwargs):
    clock = AudioClock(SR)
    clock.start()
    deck = Deck("A", clock, sample_rate=SR, **kwargs)
    if track is not None:
        deck.load(track)
    return deck, clock


def test_toggle_without_track_is_ignored():
    deck, _ = make_deck()
    assert deck.toggle_play() is False
    assert not deck.is_playing
    assert deck.voice is None
    assert deck.state_machine.current == PlaybackState.STOPPED


def test_pause_resume_accumulates_elapsed_time():
    deck, clock = make_deck(make_track(10.0))
    assert deck.toggle_play()
    clock.advance_time_for_testing(4.0)
    deck.toggle_play()
    assert deck.state.paused_at_seconds == pytest.approx(4.0)
    assert deck.state_machine.current == PlaybackState.PAUSED

    clock.advance_time_for_testing(2.0)  # paused: time does not count
    assert deck.position_seconds == pytest.approx(4.0)

    deck.toggle_play()
    clock.advance_time_for_testing(3.0)
    assert deck.position_seconds == pytest.approx(7.0)


def test_repeated_pause_resume_without_elapsed_time_is_stable():
    deck, clock = make_deck(make_track(10.0))
    deck.toggle_play()
    clock.advance_time_for_testing(1.5)
    for _ in range(10):
        deck.toggle_play()
        deck.toggle_play()
    assert deck.position_seconds == pytest.approx(1.5)


def test_effective_rate_formula():
    deck, _ = make_deck(make_track(), bend_magnitude=0.05)
    deck.set_pitch(20)
    deck.start_bend(+1)
    assert deck.effective_rate() == pytest.approx(1.25)
    deck.stop_bend()
    assert deck.effective_rate() == pytest.approx(1.20)
    deck.start_bend(-7)
    assert deck.state.pitch_bend == -1
    assert deck.effective_rate() == pytest.approx(1.15)


def test_pitch_change_mid_playback_keeps_position_continuous():
    deck, clock = make_deck(make_track(20.0))
    deck.toggle_play()
    clock.advance_time_for_testing(2.0)
    before = deck.position_seconds
    deck.set_pitch(50)
    assert deck.position_seconds == pytest.approx(before)
    assert deck.voice.rate == pytest.approx(1.5)
    clock.advance_time_for_testing(2.0)
    assert deck.position_seconds == pytest.approx(5.0)

    deck.start_bend(-1)
    at_bend = deck.position_seconds
    clock.advance_time_for_testing(1.0)
    assert deck.position_seconds == pytest.approx(at_bend + 1.45)


def test_pause_after_pitch_change_captures_rate_in_effect():
    deck, clock = make_deck(make_track(20.0))
    deck.set_pitch(-25)
    deck.toggle_play()
    clock.advance_time_for_testing(4.0)
    deck.toggle_play()
    assert deck.state.paused_at_seconds == pytest.approx(3.0)


def test_pitch_is_clamped_and_reset():
    deck, _ = make_deck(make_track())
    deck.set_pitch(250)
    assert deck.state.pitch_percent == 100
    deck.set_pitch(-250)
    assert deck.state.pitch_percent == -100
    deck.reset_pitch()
    assert deck.state.pitch_percent == 0


def test_zero_effective_rate_does_not_break_position():
    deck, clock = make_deck(make_track(10.0))
    deck.toggle_play()
    clock.advance_time_for_testing(1.0)
    deck.set_pitch(-100)
    assert deck.position_seconds == pytest.approx(1.0)
    clock.advance_time_for_testing(1.0)
    assert deck.position_seconds == pytest.approx(1.0, abs=1e-3)


def test_cycle_pitch_range():
    deck, _ = make_deck(make_track())
    assert deck.state.pitch_range == 8
    assert deck.cycle_pitch_range() == 16
    assert deck.cycle_pitch_range() == 50
    assert deck.cycle_pitch_range() == 8


def test_load_resets_position_and_pitch():
    deck, clock = make_deck(make_track(10.0))
    deck.set_pitch(12)
    deck.toggle_play()
    clock.advance_time_for_testing(3.0)
    deck.load(make_track(5.0, name="next.wav"))
    assert deck.state_machine.current == PlaybackState.STOPPED
    assert not deck.is_playing
    assert deck.position_seconds == 0.0
    assert deck.state.pitch_percent == 0.0
    assert deck.track_name == "next.wav"


def test_at_most_one_voice_load_while_playing():
    factory = VoiceRecorder()
    deck, clock = make_deck(make_track(), voice_factory=factory)
    deck.toggle_play()
    clock.advance_time_for_testing(1.0)
    assert factory.live() == 1
    deck.load(make_track(name="other.wav"))
    assert factory.live() == 0
    deck.toggle_play()
    assert factory.live() == 1
    assert len(factory.voices) == 2


def test_at_most_one_voice_play_while_scratching():
    factory = VoiceRecorder()
    deck, _ = make_deck(make_track(), voice_factory=factory)
    deck.toggle_play()
    deck.start_scratch(0.0)
    assert factory.live() == 0
    deck.toggle_play()   # pause while scratching
    deck.toggle_play()   # play again while scratching: voice waits for release
    assert factory.live() == 0
    assert deck.is_playing
    deck.stop_scratch()
    assert factory.live() == 1
    assert deck.voice is not None


def test_at_most_one_voice_rapid_double_toggle():
    factory = VoiceRecorder()
    deck, _ = make_deck(make_track(), voice_factory=factory)
    for _ in range(25):
        deck.toggle_play()
        assert factory.live() <= 1
    assert factory.live() == 1
    assert deck.play()
    assert factory.live() == 1


def test_end_of_track_stops_without_looping():
    deck, _ = make_deck(make_track(0.25))
    deck.toggle_play()
    for _ in range(8):
        deck.render(2048)
    assert not deck.is_playing
    assert deck.voice is None
    assert deck.state_machine.current == PlaybackState.STOPPED
    assert deck.position_seconds == pytest.approx(0.25)
    # Further rendering is silent
    assert not np.any(deck._render_source(512))

    # Playing again restarts from the top
    deck.toggle_play()
    assert deck.state.paused_at_seconds == 0.0
    assert deck.voice is not None


def test_stop_race_with_natural_end_is_swallowed():
    deck, _ = make_deck(make_track(0.05))
    deck.toggle_play()
    voice = deck.voice
    # Exhaust the voice behind the deck's back, before its end callback lands
    voice.on_ended = None
    voice.render(SR)
    assert voice.ended
    assert deck.pause()
    assert deck.voice is None
    assert deck.state_machine.current == PlaybackState.PAUSED


def test_volume_and_eq_levels_are_clamped_and_pushed_to_graph():
    deck, _ = make_deck(make_track())
    deck.set_volume(140)
    assert deck.state.volume == 100
    assert deck.graph.deck_gain.value == pytest.approx(1.0)
    gain_db = deck.set_eq('low', 75)
    assert gain_db == pytest.approx(10.0)
    assert deck.state.eq['low'] == 75
    deck.set_eq('high', -10)
    assert deck.state.eq['high'] == 0
    assert deck.graph.eq.get_band_db('high') == pytest.approx(-20.0)


def test_render_produces_audio_while_playing():
    deck, _ = make_deck(make_track(2.0))
    assert not np.any(deck.render(1024))
    deck.toggle_play()
    block = deck.render(4096)
    assert block.shape == (4096, 2)
    assert np.max(np.abs(block)) > 0.1


def test_snapshot_reports_controls_surface_fields():
    deck, clock = make_deck(make_track(3.0, name="snap.wav"))
    deck.toggle_play()
    clock.advance_time_for_testing(1.0)
    snap = deck.snapshot()
    assert snap.is_playing
    assert not snap.is_scratching
    assert snap.track_name == "snap.wav"
    assert snap.duration == pytest.approx(3.0)
    assert snap.position_seconds == pytest.approx(1.0)
    assert snap.state == PlaybackState.PLAYING
