#!/usr/bin/env python3
"""
Master section of the console.

MixerBus sums every connected deck graph, applies the ramped master gain
and hands the composite block to its taps:

    deck A graph --\
                    +--> master gain --> [SpectrumTap, CaptureTap] --> device
    deck B graph --/

The bus holds no deck logic; it only pulls already processed blocks.
"""

import threading
import logging
from typing import Callable, List, Optional

import numpy as np

import config
from .audio_param import AudioParam
from .ring_buffer import RingBuffer

logger = logging.getLogger(__name__)


class SpectrumTap:
    """
    Read-only frequency monitor on the master signal.

    Keeps the last `fft_size` mono samples; get_byte_frequency_data()
    returns fft_size/2 bins scaled to 0..255 over [min_db, max_db], with
    Blackman windowing and exponential smoothing between snapshots.
    """

    def __init__(self, fft_size: int = config.ANALYSER_FFT_SIZE,
                 smoothing: float = config.ANALYSER_SMOOTHING,
                 min_db: float = config.ANALYSER_MIN_DB,
                 max_db: float = config.ANALYSER_MAX_DB):
        if fft_size < 32 or fft_size & (fft_size - 1):
            raise ValueError(f"fft_size must be a power of two >= 32, got {fft_size}")
        self.fft_size = int(fft_size)
        self.smoothing = float(smoothing)
        self.min_db = float(min_db)
        self.max_db = float(max_db)
        self._window = np.blackman(self.fft_size)
        self._history = np.zeros(self.fft_size, dtype=np.float64)
        self._smoothed = np.zeros(self.frequency_bin_count, dtype=np.float64)
        self._lock = threading.Lock()

    @property
    def frequency_bin_count(self) -> int:
        return self.fft_size // 2

    def push(self, block: np.ndarray):
        """Render side: remember the newest samples (downmixed to mono)"""
        mono = block.mean(axis=1) if block.ndim == 2 else block
        n = len(mono)
        if n == 0:
            return
        with self._lock:
            if n >= self.fft_size:
                self._history[:] = mono[-self.fft_size:]
            else:
                self._history = np.roll(self._history, -n)
                self._history[-n:] = mono

    def get_float_frequency_data(self) -> np.ndarray:
        """Smoothed magnitude spectrum in dB"""
        with self._lock:
            frame = self._history * self._window
            magnitude = np.abs(np.fft.rfft(frame))[:self.frequency_bin_count] / self.fft_size
            self._smoothed = self.smoothing * self._smoothed + (1.0 - self.smoothing) * magnitude
            smoothed = self._smoothed.copy()
        return 20.0 * np.log10(np.maximum(smoothed, 1e-12))

    def get_byte_frequency_data(self) -> np.ndarray:
        db = self.get_float_frequency_data()
        scaled = (db - self.min_db) * (255.0 / (self.max_db - self.min_db))
        return np.clip(np.floor(scaled), 0, 255).astype(np.uint8)


class CaptureTap:
    """
    Read-only tap feeding an external recorder.

    Every master block goes into a ring buffer (drained with read()) and
    to any registered listeners. A slow reader loses the oldest audio,
    never blocks the render thread.
    """

    def __init__(self, sample_rate: int, buffer_seconds: float = config.CAPTURE_BUFFER_SECONDS,
                 channels: int = config.CHANNELS):
        self.sample_rate = int(sample_rate)
        self.buffer = RingBuffer(int(buffer_seconds * self.sample_rate), channels=channels, overwrite=True)
        self._listeners: List[Callable[[np.ndarray], None]] = []

    def add_listener(self, callback: Callable[[np.ndarray], None]):
        self._listeners.append(callback)

    def remove_listener(self, callback: Callable[[np.ndarray], None]):
        if callback in self._listeners:
            self._listeners.remove(callback)

    def push(self, block: np.ndarray):
        self.buffer.write(block)
        for listener in list(self._listeners):
            try:
                listener(block)
            except Exception as e:
                logger.error(f"Capture listener error: {e}")

    def read(self, frames: int):
        """Drain up to `frames` frames. Returns (data, frames_read)."""
        return self.buffer.read(frames)

    @property
    def dropped_frames(self) -> int:
        return self.buffer.get_stats()['dropped_frames']


class MixerBus:
    """Sums deck graphs, applies master gain and feeds the taps"""

    def __init__(self, sample_rate: int = config.SAMPLE_RATE,
                 master_volume: float = config.DEFAULT_MASTER_VOLUME,
                 channels: int = config.CHANNELS):
        self.sample_rate = int(sample_rate)
        self.channels = int(channels)
        self.master_volume = max(0.0, min(100.0, float(master_volume)))
        self.master_gain = AudioParam("master.gain", self.sample_rate,
                                      initial=self.master_volume / 100.0,
                                      smoothing_ms=config.PARAM_SMOOTHING_MS)
        self.spectrum = SpectrumTap()
        self.capture = CaptureTap(self.sample_rate, channels=self.channels)
        self._inputs = []
        self._inputs_lock = threading.Lock()
        logger.debug(f"MixerBus - Initialized at {self.sample_rate} Hz, master volume {self.master_volume:.0f}")

    @property
    def inputs(self) -> list:
        with self._inputs_lock:
            return list(self._inputs)

    def connect(self, graph):
        with self._inputs_lock:
            if graph not in self._inputs:
                self._inputs.append(graph)
        logger.debug(f"MixerBus - Input connected (deck {getattr(graph, 'deck_id', '?')})")

    def disconnect(self, graph):
        with self._inputs_lock:
            if graph in self._inputs:
                self._inputs.remove(graph)
        logger.debug(f"MixerBus - Input disconnected (deck {getattr(graph, 'deck_id', '?')})")

    def set_master_volume(self, volume: float) -> float:
        """0..100 -> 0.0..1.0 linear master gain, ramped"""
        self.master_volume = max(0.0, min(100.0, float(volume)))
        gain = self.master_volume / 100.0
        self.master_gain.set_target(gain)
        logger.debug(f"MixerBus - Master volume -> {self.master_volume:.0f}")
        return gain

    def render(self, frames: int) -> np.ndarray:
        """Pull one block from every connected deck graph and mix it"""
        blocks = [graph.render(frames) for graph in self.inputs]
        return self.mix(blocks, frames)

    def mix(self, blocks, frames: Optional[int] = None) -> np.ndarray:
        if frames is None:
            frames = len(blocks[0]) if blocks else 0
        out = np.zeros((frames, self.channels), dtype=np.float32)
        for block in blocks:
            out += block
        out *= self.master_gain.next_block(frames).reshape(-1, 1).astype(np.float32)
        self.spectrum.push(out)
        self.capture.push(out)
        return np.clip(out, -1.0, 1.0)


class MixRecorder:
    """
    In-memory recorder on a capture tap.

    start() clears and arms, stop() returns everything heard since as a
    (frames, channels) float32 array. Encoding to a file is left to the
    caller.
    """

    def __init__(self, tap: CaptureTap, clock):
        self.tap = tap
        self.clock = clock
        self._chunks: List[np.ndarray] = []
        self._lock = threading.Lock()
        self._recording = False
        self._start_time = 0.0

    @property
    def is_recording(self) -> bool:
        return self._recording

    @property
    def recording_time(self) -> int:
        """Whole seconds since start() on the engine clock (0 when idle)"""
        if not self._recording:
            return 0
        return int(self.clock.get_current_time() - self._start_time)

    def start(self):
        if self._recording:
            logger.debug("MixRecorder - Already recording")
            return
        with self._lock:
            self._chunks = []
        self._start_time = self.clock.get_current_time()
        self._recording = True
        self.tap.add_listener(self._on_block)
        logger.info("MixRecorder - Recording started")

    def stop(self) -> np.ndarray:
        if self._recording:
            self.tap.remove_listener(self._on_block)
            self._recording = False
        with self._lock:
            chunks, self._chunks = self._chunks, []
        if not chunks:
            return np.zeros((0, self.tap.buffer.channels), dtype=np.float32)
        audio = np.concatenate(chunks, axis=0)
        logger.info(f"MixRecorder - Recording stopped ({len(audio) / self.tap.sample_rate:.2f}s)")
        return audio

    def _on_block(self, block: np.ndarray):
        with self._lock:
            self._chunks.append(np.array(block, dtype=np.float32, copy=True))
