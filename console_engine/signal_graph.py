#!/usr/bin/env python3
"""
Per-deck signal graph.

Fixed topology, built once per deck:

    source -> DeckGain -> LowShelf(320 Hz) -> Peaking(1 kHz, Q 0.7)
           -> HighShelf(3.2 kHz) -> mixer bus input

The source is whatever the deck renders (its voice, release tails and the
scrub monitor). All level changes are ramped on the render timeline.
"""

import logging
from typing import Callable

import numpy as np

import config
from .audio_param import AudioParam
from .professional_eq import ToneEQ3, BANDS, gain_db_for_level

logger = logging.getLogger(__name__)


class DeckSignalGraph:
    """Gain + three-band EQ chain feeding one input of the mixer bus"""

    def __init__(self, deck_id: str, sample_rate: int,
                 source: Callable[[int], np.ndarray], destination=None,
                 volume: float = config.DEFAULT_DECK_VOLUME):
        self.deck_id = deck_id
        self.sample_rate = int(sample_rate)
        self._source = source
        self.deck_gain = AudioParam(f"deck{deck_id}.gain", self.sample_rate,
                                    initial=volume / 100.0,
                                    smoothing_ms=config.PARAM_SMOOTHING_MS)
        self.eq = ToneEQ3(self.sample_rate)
        self._eq_levels = {band: config.EQ_LEVEL_DEFAULT for band in BANDS}
        self.destination = None
        if destination is not None:
            self.connect(destination)
        logger.debug(f"Deck {deck_id} - Signal graph built: gain -> lowshelf -> peaking -> highshelf -> bus")

    def connect(self, destination):
        """Attach the chain output to a mixer bus (exactly one destination)"""
        if self.destination is not None:
            self.destination.disconnect(self)
        self.destination = destination
        destination.connect(self)

    def disconnect(self):
        if self.destination is not None:
            self.destination.disconnect(self)
            self.destination = None

    # ---- setters (control timeline) ----
    def set_eq(self, band: str, level: float) -> float:
        """Set an EQ band from a 0..100 level (50 = 0 dB). Returns the applied dB."""
        if band not in BANDS:
            raise ValueError(f"Unknown EQ band: {band!r}")
        level = max(0.0, min(100.0, float(level)))
        self._eq_levels[band] = level
        gain_db = gain_db_for_level(level)
        self.eq.set_band_db(band, gain_db)
        logger.debug(f"Deck {self.deck_id} - EQ {band} -> {level:.1f} ({gain_db:+.1f} dB)")
        return gain_db

    def get_eq_level(self, band: str) -> float:
        return self._eq_levels[band]

    def get_eq_levels(self) -> dict:
        return dict(self._eq_levels)

    def set_deck_gain(self, volume: float) -> float:
        """Map a 0..100 volume to 0.0..1.0 linear gain, ramped"""
        gain = max(0.0, min(100.0, float(volume))) / 100.0
        self.deck_gain.set_target(gain)
        return gain

    # ---- render timeline ----
    def render(self, frames: int) -> np.ndarray:
        block = self._source(frames)
        block = block * self.deck_gain.next_block(frames).reshape(-1, 1)
        return self.eq.process_block(block)
