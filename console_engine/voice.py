# Buffer voice: the one active sample reader of a deck
# Turntable-style varispeed playback of a decoded Track (rate changes pitch)

import math
import logging
from typing import Callable, Optional

import numpy as np

import config
from .track import Track

logger = logging.getLogger(__name__)


class InvalidStateError(Exception):
    """Voice used out of order (started twice, stopped after it already finished...)"""


class BufferVoice:
    """
    Reads a Track from an offset at a variable playback rate.

    A voice is single-use: start() once, render() from the render timeline
    until it is stopped or the buffer is exhausted. Exhaustion fires
    `on_ended` exactly once.
    """

    def __init__(self, track: Track, output_sample_rate: int, rate: float = 1.0,
                 on_ended: Optional[Callable[["BufferVoice"], None]] = None,
                 fade_ms: float = config.VOICE_FADE_MS):
        self.track = track
        self.output_sample_rate = int(output_sample_rate)
        self.on_ended = on_ended
        # Track frames advanced per output frame at rate 1.0
        self._sr_ratio = track.sample_rate / float(self.output_sample_rate)
        self._rate = max(0.0, float(rate))
        self._position = 0.0  # in track frames
        self._fade_frames = max(1, int(fade_ms * 1e-3 * self.output_sample_rate))
        self._fade_in_done = 0
        self._started = False
        self._stopped = False
        self._ended = False

    # ---- state ----
    @property
    def started(self) -> bool:
        return self._started

    @property
    def ended(self) -> bool:
        return self._ended

    @property
    def active(self) -> bool:
        return self._started and not self._stopped and not self._ended

    @property
    def rate(self) -> float:
        return self._rate

    @property
    def position_seconds(self) -> float:
        return min(self._position, self.track.total_frames) / self.track.sample_rate

    # ---- control ----
    def start(self, offset_seconds: float = 0.0):
        if self._started:
            raise InvalidStateError("Voice can only be started once")
        offset = max(0.0, min(float(offset_seconds), self.track.duration))
        self._position = offset * self.track.sample_rate
        self._started = True
        logger.debug(f"Voice started at {offset:.3f}s, rate {self._rate:.4f}")

    def set_rate(self, rate: float):
        # The render timeline picks the new rate up at the next block
        self._rate = max(0.0, float(rate))

    def stop(self) -> np.ndarray:
        """
        Stop the voice. Returns a short fade-out tail (frames, 2) rendered
        from where the voice was, for the caller to play out instead of a
        hard cut.
        """
        if not self._started or self._stopped or self._ended:
            raise InvalidStateError("Voice already stopped")
        tail = self._read(self._fade_frames)
        tail *= np.linspace(1.0, 0.0, len(tail), dtype=np.float32).reshape(-1, 1)
        self._stopped = True
        return tail

    # ---- render ----
    def render(self, frames: int) -> np.ndarray:
        """Next `frames` output frames; silence once stopped or exhausted"""
        if not self.active:
            return np.zeros((frames, 2), dtype=np.float32)

        out = self._read(frames)

        if self._fade_in_done < self._fade_frames:
            n = min(frames, self._fade_frames - self._fade_in_done)
            progress = (self._fade_in_done + np.arange(n, dtype=np.float64)) / self._fade_frames
            out[:n] *= np.sin(progress * math.pi / 2).astype(np.float32).reshape(-1, 1)
            self._fade_in_done += n

        if self._position >= self.track.total_frames and not self._ended:
            self._ended = True
            logger.debug("Voice reached end of track")
            if self.on_ended:
                self.on_ended(self)
        return out

    def _read(self, frames: int) -> np.ndarray:
        """Interpolated read advancing the playhead by `frames` output frames"""
        out = np.zeros((frames, 2), dtype=np.float32)
        total = self.track.total_frames
        step = self._rate * self._sr_ratio
        positions = self._position + step * np.arange(frames, dtype=np.float64)
        n_valid = int(np.searchsorted(positions, total, side='left'))
        if n_valid > 0:
            p = positions[:n_valid]
            i0 = np.floor(p).astype(np.int64)
            i1 = np.minimum(i0 + 1, total - 1)
            frac = (p - i0).astype(np.float32).reshape(-1, 1)
            samples = self.track.samples
            out[:n_valid] = samples[i0] * (1.0 - frac) + samples[i1] * frac
        self._position = min(self._position + step * frames, float(total))
        return out
