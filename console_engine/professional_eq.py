#!/usr/bin/env python3
"""
Deck EQ for the console signal graph.

ToneEQ3 is the serial three-band tone EQ every deck runs through:
low shelf -> mid peaking -> high shelf, RBJ cookbook biquads in
second-order-section form, stereo, stateful across blocks and with
crossfaded coefficient updates so that turning a knob never clicks.
"""

import threading
import logging

import numpy as np
import scipy.signal as sps

import config

logger = logging.getLogger(__name__)

BANDS = ('low', 'mid', 'high')


def gain_db_for_level(level: float) -> float:
    """Map a 0..100 knob level to dB gain (50 = unity, -20..+20 dB)"""
    level = max(0.0, min(100.0, float(level)))
    return (level - 50.0) * config.EQ_DB_PER_STEP


class ToneEQ3:
    """
    Professional 3-band tone EQ for musical shaping in stereo.
    - Serial processing: low shelf, mid peaking, high shelf
    - Stateful across blocks (per-stage zi for each channel)
    - Smooth parameter updates via short crossfade (default EQ_SMOOTHING_MS)
    """

    def __init__(self, sample_rate: int, f_low: float = config.EQ_LOW_FREQ,
                 f_mid: float = config.EQ_MID_FREQ, q_mid: float = config.EQ_MID_Q,
                 f_high: float = config.EQ_HIGH_FREQ,
                 xfade_ms: float = config.EQ_SMOOTHING_MS, channels: int = 2):
        self.sr = int(sample_rate)
        self.f_low = float(f_low)
        self.f_mid = float(f_mid)
        self.q_mid = float(q_mid)
        self.f_high = float(f_high)
        self.channels = int(channels)
        self._xfade = int(max(1, xfade_ms * 1e-3 * self.sr))
        self._left = 0
        self._gains_db = {band: 0.0 for band in BANDS}
        self._cur = self._design(0.0, 0.0, 0.0)
        self._pend = None
        self._stale = False
        self._lock = threading.Lock()

    # ---- control side ----
    def set_band_db(self, band: str, gain_db: float):
        """Set one band's gain in dB; the change is crossfaded in"""
        if band not in BANDS:
            raise ValueError(f"Unknown EQ band: {band!r} (expected one of {BANDS})")
        with self._lock:
            self._gains_db[band] = float(gain_db)
            self._schedule_design()

    def get_band_db(self, band: str) -> float:
        return self._gains_db[band]

    def is_flat(self) -> bool:
        """True when every band sits within 0.01 dB of unity"""
        return all(abs(g) < 0.01 for g in self._gains_db.values())

    def _schedule_design(self):
        if self._pend is not None:
            # Never retarget a running fade; process_block picks the
            # latest gains up once the blend has reached the pending chain
            self._stale = True
            return
        pend = self._design(self._gains_db['low'], self._gains_db['mid'], self._gains_db['high'])
        # Start the new chain from the running filter memory to avoid a cold-start transient
        pend["zi"] = [zi.copy() for zi in self._cur["zi"]]
        self._pend = pend
        self._left = self._xfade

    # ---- render side ----
    def process_block(self, x: np.ndarray) -> np.ndarray:
        """
        Process stereo audio block with 3-band EQ

        Args:
            x: Audio data, shape (frames, channels)

        Returns:
            Processed audio, shape (frames, channels), float32
        """
        xin = np.asarray(x, dtype=np.float64)
        if xin.ndim == 1:
            xin = np.column_stack([xin] * self.channels)
        if len(xin) == 0:
            return xin.astype(np.float32)

        with self._lock:
            pend = self._pend
            if pend is not None and self._left > 0:
                n = len(xin)
                nxf = min(self._left, n)
                # Both chains keep running so their filter memories stay continuous
                y0 = self._run(xin, self._cur)
                y1 = self._run(xin, pend)
                done = self._xfade - self._left
                w = ((done + np.arange(1, nxf + 1, dtype=np.float64)) / self._xfade).reshape(-1, 1)
                y = y1.copy()
                y[:nxf] = (1.0 - w) * y0[:nxf] + w * y1[:nxf]
                self._left -= nxf
                if self._left <= 0:
                    self._cur = pend
                    self._pend = None
                    if self._stale:
                        self._stale = False
                        self._schedule_design()
            else:
                y = self._run(xin, self._cur)

        return y.astype(np.float32)

    def reset(self):
        """Reset all filter states (e.g. after the deck fell silent)"""
        with self._lock:
            for cfg in (self._cur, self._pend):
                if cfg is not None:
                    cfg["zi"] = [np.zeros_like(zi) for zi in cfg["zi"]]

    # ---- internals ----
    def _design(self, low_db, mid_db, high_db):
        def shelf_low(db, fc):
            A = 10**(db/40.0)
            w0 = 2*np.pi*fc/self.sr; cosw = np.cos(w0); sinw = np.sin(w0)
            S = 1.0
            alpha = sinw/2*np.sqrt((A+1/A)*(1/S -1)+2)
            b0 =    A*((A+1) - (A-1)*cosw + 2*np.sqrt(A)*alpha)
            b1 =  2*A*((A-1) - (A+1)*cosw)
            b2 =    A*((A+1) - (A-1)*cosw - 2*np.sqrt(A)*alpha)
            a0 =        (A+1) + (A-1)*cosw + 2*np.sqrt(A)*alpha
            a1 =   -2*((A-1) + (A+1)*cosw)
            a2 =        (A+1) + (A-1)*cosw - 2*np.sqrt(A)*alpha
            return np.array([[b0/a0, b1/a0, b2/a0, 1.0, a1/a0, a2/a0]])
        def peak(db, fc, Q):
            A = 10**(db/40.0); w0 = 2*np.pi*fc/self.sr
            alpha = np.sin(w0)/(2*Q); cosw = np.cos(w0)
            b0 = 1 + alpha*A; b1 = -2*cosw; b2 = 1 - alpha*A
            a0 = 1 + alpha/A; a1 = -2*cosw; a2 = 1 - alpha/A
            return np.array([[b0/a0, b1/a0, b2/a0, 1.0, a1/a0, a2/a0]])
        def shelf_high(db, fc):
            A = 10**(db/40.0)
            w0 = 2*np.pi*fc/self.sr; cosw = np.cos(w0); sinw = np.sin(w0)
            S = 1.0
            alpha = sinw/2*np.sqrt((A+1/A)*(1/S -1)+2)
            b0 =    A*((A+1) + (A-1)*cosw + 2*np.sqrt(A)*alpha)
            b1 = -2*A*((A-1) + (A+1)*cosw)
            b2 =    A*((A+1) + (A-1)*cosw - 2*np.sqrt(A)*alpha)
            a0 =        (A+1) - (A-1)*cosw + 2*np.sqrt(A)*alpha
            a1 =    2*((A-1) - (A+1)*cosw)
            a2 =        (A+1) - (A-1)*cosw - 2*np.sqrt(A)*alpha
            return np.array([[b0/a0, b1/a0, b2/a0, 1.0, a1/a0, a2/a0]])

        sosL = shelf_low (low_db,  self.f_low)
        sosM = peak      (mid_db,  self.f_mid, self.q_mid)
        sosH = shelf_high(high_db, self.f_high)

        # zi layout for axis=0 stereo filtering: (sections, 2, channels)
        zeros = np.zeros((1, 2, self.channels))
        return {
            "sos": [sosL, sosM, sosH],
            "zi":  [zeros.copy(), zeros.copy(), zeros.copy()],
            "gains": [low_db, mid_db, high_db]
        }

    def _run(self, xin: np.ndarray, cfg: dict) -> np.ndarray:
        y = xin
        for i, sos in enumerate(cfg["sos"]):
            y, cfg["zi"][i] = sps.sosfilt(sos, y, axis=0, zi=cfg["zi"][i])
        return y

    def frequency_response_db(self, freqs_hz) -> np.ndarray:
        """Magnitude response in dB of the chain the current gains settle to"""
        cfg = self._design(self._gains_db['low'], self._gains_db['mid'], self._gains_db['high'])
        sos = np.vstack(cfg["sos"])
        _, h = sps.sosfreqz(sos, worN=np.asarray(freqs_hz, dtype=np.float64), fs=self.sr)
        return 20.0 * np.log10(np.maximum(np.abs(h), 1e-12))
