import sys, pathlib
import numpy as np
import pytest

# Ensure repository root is on path
sys.path.insert(0, str(pathlib.Path(__file__).resolve().parents[1]))

from console_engine.professional_eq import ToneEQ3, BANDS, gain_db_for_level
from console_engine.signal_graph import DeckSignalGraph

SR = 44100


def test_level_50_is_unity_for_every_band():
    eq = ToneEQ3(SR)
    graph = DeckSignalGraph("A", SR, source=lambda n: np.zeros((n, 2), dtype=np.float32))
    for band in BANDS:
        assert graph.set_eq(band, 50) == 0.0
        assert eq.get_band_db(band) == 0.0
    assert gain_db_for_level(50) == 0.0


def test_level_to_db_is_monotonic_and_bounded():
    levels = np.linspace(0, 100, 101)
    gains = [gain_db_for_level(v) for v in levels]
    assert all(a < b for a, b in zip(gains, gains[1:]))
    assert gains[0] == pytest.approx(-20.0)
    assert gains[-1] == pytest.approx(20.0)
    assert gain_db_for_level(-30) == pytest.approx(-20.0)
    assert gain_db_for_level(130) == pytest.approx(20.0)


def test_flat_eq_passes_signal_through():
    eq = ToneEQ3(SR)
    assert eq.is_flat()
    rng = np.random.default_rng(1)
    x = rng.uniform(-0.5, 0.5, size=(4096, 2)).astype(np.float32)
    y = eq.process_block(x)
    assert y.shape == x.shape
    assert y.dtype == np.float32
    np.testing.assert_allclose(y, x, atol=1e-5)


def test_band_response_lands_where_designed():
    probes = [20.0, 1000.0, 20000.0]

    eq = ToneEQ3(SR)
    eq.set_band_db('low', 12.0)
    low, _, high = eq.frequency_response_db(probes)
    assert low == pytest.approx(12.0, abs=0.5)
    assert abs(high) < 0.5

    eq = ToneEQ3(SR)
    eq.set_band_db('mid', -6.0)
    _, mid, _ = eq.frequency_response_db(probes)
    assert mid == pytest.approx(-6.0, abs=0.05)

    eq = ToneEQ3(SR)
    eq.set_band_db('high', 12.0)
    low, _, high = eq.frequency_response_db(probes)
    assert high == pytest.approx(12.0, abs=0.5)
    assert abs(low) < 0.5


def test_unknown_band_is_rejected():
    eq = ToneEQ3(SR)
    with pytest.raises(ValueError):
        eq.set_band_db('presence', 3.0)


def test_band_change_crossfades_without_jump():
    eq = ToneEQ3(SR)
    t = np.arange(SR) / SR
    tone = (0.5 * np.sin(2 * np.pi * 100.0 * t)).astype(np.float32)
    x = np.column_stack([tone, tone])

    first = eq.process_block(x[:1024])
    eq.set_band_db('low', -20.0)
    second = eq.process_block(x[1024:2048])
    # No sample-to-sample step larger than the signal itself can make
    joined = np.concatenate([first, second])
    max_step = np.max(np.abs(np.diff(joined[:, 0])))
    assert max_step < 0.05
    # Fade finished inside the block, the pending design is now current
    assert eq._pend is None
    tail = eq.process_block(x[2048:8192])
    assert np.max(np.abs(tail[-2048:])) < 0.5 * np.max(np.abs(x))



def test_second_change_during_crossfade_does_not_click():
    eq = ToneEQ3(SR)
    t = np.arange(SR) / SR
    tone = (0.5 * np.sin(2 * np.pi * 1000.0 * t)).astype(np.float32)
    x = np.column_stack([tone, tone])
    baseline = np.max(np.abs(np.diff(tone[:4096])))

    blocks = [eq.process_block(x[:4096])]
    eq.set_band_db('mid', -20.0)
    blocks.append(eq.process_block(x[4096:4160]))
    # Kill and return before the first fade is done
    eq.set_band_db('mid', 0.0)
    assert eq._pend is not None
    for start in range(4160, 16384, 64):
        blocks.append(eq.process_block(x[start:start + 64]))

    out = np.concatenate(blocks)[:, 0]
    assert np.max(np.abs(np.diff(out))) < 2 * baseline
    # The deferred design was picked up and has settled back to unity
    assert eq._pend is None
    assert eq.get_band_db('mid') == 0.0
    assert np.max(np.abs(out[-2048:])) == pytest.approx(0.5, abs=0.02)
    assert eq.frequency_response_db([1000.0])[0] == pytest.approx(0.0, abs=0.01)

def test_reset_clears_filter_memory():
    eq = ToneEQ3(SR)
    eq.set_band_db('mid', 10.0)
    eq.process_block(np.ones((2048, 2), dtype=np.float32))
    eq.reset()
    out = eq.process_block(np.zeros((16, 2), dtype=np.float32))
    assert not np.any(out)


def test_graph_applies_deck_gain_after_ramp():
    graph = DeckSignalGraph("A", SR, source=lambda n: np.full((n, 2), 0.5, dtype=np.float32), volume=100)
    graph.set_deck_gain(50)
    block = graph.render(2048)
    assert block[0, 0] > block[-1, 0]
    assert block[-1, 0] == pytest.approx(0.25, abs=1e-3)
    assert graph.get_eq_levels() == {'low': 50, 'mid': 50, 'high': 50}
