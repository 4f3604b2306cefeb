import sys, pathlib
import pytest

# Ensure repository root is on path
sys.path.insert(0, str(pathlib.Path(__file__).resolve().parents[1]))

from console_engine.audio_clock import AudioClock
from console_engine.deck_state_machine import DeckEvent, DeckState, DeckStateMachine, PlaybackState


def test_clock_counts_only_while_running():
    clock = AudioClock(48000)
    clock.update_frame_count(4800)
    assert clock.get_current_time() == 0.0
    clock.start()
    clock.update_frame_count(4800)
    assert clock.get_current_time() == pytest.approx(0.1)
    clock.stop()
    clock.update_frame_count(4800)
    assert clock.get_total_frames() == 4800
    state = clock.get_state()
    assert not state.is_running
    assert state.sample_rate == 48000


def test_clock_reset_keeps_running_flag():
    clock = AudioClock(44100)
    clock.start()
    clock.advance_time_for_testing(2.5)
    assert clock.get_total_frames() == 110250
    clock.reset()
    assert clock.get_current_time() == 0.0
    assert clock.is_running()


def test_state_machine_transitions_and_observers():
    seen = []
    machine = DeckStateMachine("A")
    machine.add_observer(lambda old, new, state: seen.append((old, new, state.is_playing)))

    assert machine.handle_event(DeckEvent.PLAY)
    assert machine.handle_event(DeckEvent.PAUSE)
    assert machine.handle_event(DeckEvent.PLAY)
    assert machine.handle_event(DeckEvent.TRACK_END)
    assert seen == [
        (PlaybackState.STOPPED, PlaybackState.PLAYING, True),
        (PlaybackState.PLAYING, PlaybackState.PAUSED, False),
        (PlaybackState.PAUSED, PlaybackState.PLAYING, True),
        (PlaybackState.PLAYING, PlaybackState.STOPPED, False),
    ]


def test_invalid_transitions_are_ignored():
    machine = DeckStateMachine("B")
    assert not machine.handle_event(DeckEvent.PAUSE)
    assert not machine.handle_event(DeckEvent.TRACK_END)
    assert machine.current == PlaybackState.STOPPED
    machine.handle_event(DeckEvent.PLAY)
    assert not machine.handle_event(DeckEvent.PLAY)
    assert machine.handle_event(DeckEvent.LOAD)
    assert machine.current == PlaybackState.STOPPED


def test_failing_observer_does_not_block_transition():
    machine = DeckStateMachine("A")

    def broken(old, new, state):
        raise RuntimeError("ui went away")

    machine.add_observer(broken)
    assert machine.handle_event(DeckEvent.PLAY)
    assert machine.state.is_playing


def test_effective_rate_is_recomputed_from_state():
    state = DeckState()
    assert state.effective_rate(0.05) == 1.0
    state.pitch_percent = -8
    state.pitch_bend = -1
    assert state.effective_rate(0.05) == pytest.approx(0.87)
