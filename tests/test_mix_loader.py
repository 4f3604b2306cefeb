import sys, pathlib, json
import numpy as np
import pytest
from scipy.io import wavfile

# Ensure repository root is on path
sys.path.insert(0, str(pathlib.Path(__file__).resolve().parents[1]))

import config
from console_engine.engine import AudioEngine
from console_engine.mix_loader import MixScriptError, MixScriptLoader


def write_wav(path, seconds=3.0, sr=44100):
    t = np.arange(int(seconds * sr)) / sr
    wavfile.write(str(path), sr, (0.3 * np.sin(2 * np.pi * 220.0 * t)).astype(np.float32))
    return str(path)


def action(action_id, command, deck_id="A", trigger=None, **parameters):
    return {
        "action_id": action_id,
        "deck_id": deck_id,
        "command": command,
        "parameters": parameters,
        "trigger": trigger or {"type": "script_start"},
    }


def at(seconds):
    return {"type": "at_time", "seconds": seconds}


def test_script_start_actions_run_in_order_and_timed_actions_wait(tmp_path):
    engine = AudioEngine(app_config_module=config)
    loader = MixScriptLoader(engine)
    loader.load_mix({
        "mix_name": "Test Mix",
        "actions": [
            action("load", "load_track", filepath=write_wav(tmp_path / "a.wav")),
            action("play", "toggle_play"),
            action("pitch", "set_pitch", trigger=at(1.0), percent=10),
            action("eq", "set_eq", trigger=at(0.5), band="low", level=20),
            action("master", "set_master_volume", deck_id=None, trigger=at(1.0), volume=40),
        ],
    })
    deck = engine.deck("A")
    assert deck.is_playing
    assert loader.pending_count == 3
    assert loader.next_action_time() == 0.5
    assert loader.poll() == 0

    engine.render_seconds(0.5)
    assert loader.poll() == 1
    assert deck.state.eq["low"] == 20

    engine.render_seconds(0.5)
    assert loader.poll() == 2
    assert deck.state.pitch_percent == 10
    assert engine.bus.master_volume == 40
    assert loader.is_finished
    assert loader.executed_actions == ["load", "play", "eq", "pitch", "master"]


def test_unknown_command_and_bad_parameters_are_skipped(tmp_path):
    engine = AudioEngine(app_config_module=config)
    loader = MixScriptLoader(engine)
    loader.load_mix({"actions": [
        action("mystery", "activate_loop"),
        action("no_deck", "toggle_play", deck_id=None),
        action("no_level", "set_volume"),
        action("vol", "set_volume", deck_id="B", volume=55),
    ]})
    assert loader.executed_actions == ["vol"]
    assert engine.deck("B").state.volume == 55


def test_scratch_commands_drive_the_deck(tmp_path):
    engine = AudioEngine(app_config_module=config)
    loader = MixScriptLoader(engine)
    loader.load_mix({"actions": [
        action("load", "load_track", deck_id="B", filepath=write_wav(tmp_path / "b.wav")),
        action("grab", "start_scratch", deck_id="B", angle=0),
        action("move", "scratch_move", deck_id="B", angles=[10, 25]),
        action("drop", "stop_scratch", deck_id="B"),
    ]})
    expected = (10 ** 1.2 + 15 ** 1.2) * 1.5 / 360.0
    assert engine.deck("B").state.paused_at_seconds == pytest.approx(expected)
    assert not engine.deck("B").is_scratching


def test_load_mix_config_from_file(tmp_path):
    engine = AudioEngine(app_config_module=config)
    script = tmp_path / "mix.json"
    script.write_text(json.dumps({"mix_name": "File Mix", "actions": [
        action("vol", "set_volume", volume=10),
    ]}))
    loader = MixScriptLoader(engine)
    assert loader.load_mix_config(str(script))
    assert loader.get_mix_info()["mix_name"] == "File Mix"
    assert engine.deck("A").state.volume == 10


def test_invalid_scripts_are_rejected(tmp_path):
    engine = AudioEngine(app_config_module=config)
    loader = MixScriptLoader(engine)
    assert not loader.load_mix_config(str(tmp_path / "missing.json"))

    broken = tmp_path / "broken.json"
    broken.write_text("{not json")
    assert not loader.load_mix_config(str(broken))

    beat = tmp_path / "beat.json"
    beat.write_text(json.dumps({"actions": [
        action("b", "toggle_play", trigger={"type": "on_deck_beat", "beat_number": 4}),
    ]}))
    assert not loader.load_mix_config(str(beat))

    with pytest.raises(MixScriptError):
        loader.load_mix({"actions": [action("neg", "toggle_play", trigger=at(-1))]})


def test_load_mix_leaves_callers_document_untouched():
    engine = AudioEngine(app_config_module=config)
    loader = MixScriptLoader(engine)
    bare = {"deck_id": "B", "command": "set_volume"}
    document = {"actions": [bare, action("vol", "set_volume", deck_id="B", trigger=at(0.25), volume=30)]}
    snapshot = json.loads(json.dumps(document))

    loader.load_mix(document)
    assert document == snapshot
    assert "trigger" not in bare and "action_id" not in bare
    # Defaults still apply to what the loader runs
    assert loader.pending_count == 1
    assert loader.next_action_time() == 0.25
