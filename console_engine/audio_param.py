# Smoothed audio parameters for the console signal graph
# Control threads write targets; the render thread consumes per-sample ramps

import threading
import logging

import numpy as np

logger = logging.getLogger(__name__)

class AudioParam:
    """
    A single automatable value (gain, level...) with linear de-zippering.

    set_target() never jumps: the render thread walks from the value it is
    currently outputting to the new target over `smoothing_ms`, so a fader
    move mid-block cannot produce a discontinuity.
    """

    def __init__(self, name: str, sample_rate: int, initial: float,
                 min_value: float = 0.0, max_value: float = 1.0,
                 smoothing_ms: float = 5.0):
        self.name = name
        self.sample_rate = int(sample_rate)
        self.min_value = float(min_value)
        self.max_value = float(max_value)
        self._ramp_frames = max(1, int(smoothing_ms * 1e-3 * self.sample_rate))
        self._lock = threading.Lock()

        initial = self._clamp(initial)
        self._current = initial   # value emitted by the last rendered sample
        self._target = initial
        self._ramp_start = initial
        self._ramp_left = 0

    def _clamp(self, value):
        return max(self.min_value, min(self.max_value, float(value)))

    @property
    def value(self) -> float:
        """The value the parameter is heading to (what the control last asked for)"""
        with self._lock:
            return self._target

    @property
    def current_value(self) -> float:
        """The value most recently emitted to the render thread"""
        with self._lock:
            return self._current

    @property
    def is_ramping(self) -> bool:
        with self._lock:
            return self._ramp_left > 0

    def set_target(self, value: float) -> None:
        """Ramp linearly from the instantaneous value to `value`"""
        value = self._clamp(value)
        with self._lock:
            if value == self._target and self._ramp_left == 0:
                return
            self._ramp_start = self._current
            self._target = value
            self._ramp_left = self._ramp_frames

    def set_value(self, value: float) -> None:
        """Jump immediately. Only for construction or while the path is silent."""
        value = self._clamp(value)
        with self._lock:
            self._current = self._target = self._ramp_start = value
            self._ramp_left = 0

    def next_block(self, frames: int) -> np.ndarray:
        """Per-sample values for the next `frames` samples of the render timeline"""
        out = np.empty(frames, dtype=np.float64)
        with self._lock:
            if self._ramp_left <= 0:
                out.fill(self._target)
                return out

            done = self._ramp_frames - self._ramp_left
            n = min(self._ramp_left, frames)
            # Progress of each sample in (0, 1]; the last ramp sample lands on the target
            progress = (done + np.arange(1, n + 1, dtype=np.float64)) / self._ramp_frames
            out[:n] = self._ramp_start + (self._target - self._ramp_start) * progress
            out[n:] = self._target
            self._ramp_left -= n
            self._current = float(out[-1]) if frames > 0 else self._current
            return out
