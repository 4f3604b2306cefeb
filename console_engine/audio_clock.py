#!/usr/bin/env python3
"""
Engine clock of the console.

Time is counted in rendered frames, not read from the wall: the output
callback reports every block it renders and "now" is frames / rate.
Voice start references, parameter ramps, mix script triggers and the
recording timer all read this clock, so a paused device also pauses
logical time.
"""

import threading
from dataclasses import dataclass
import logging

logger = logging.getLogger(__name__)

@dataclass(frozen=True)
class ClockState:
    """Snapshot of the engine clock"""
    is_running: bool = False
    current_time: float = 0.0
    total_frames: int = 0
    sample_rate: int = 44100

class AudioClock:
    """Frame-counted, thread-safe engine clock"""

    def __init__(self, sample_rate: int = 44100):
        if sample_rate <= 0:
            raise ValueError(f"Invalid sample rate: {sample_rate}")
        self.sample_rate = int(sample_rate)
        self._frames = 0
        self._running = False
        self._lock = threading.Lock()

        logger.debug(f"AudioClock initialized with sample rate: {self.sample_rate}")

    def start(self) -> None:
        """Let rendered frames count. Starting twice is harmless."""
        with self._lock:
            if self._running:
                logger.debug("AudioClock already running")
                return
            self._running = True
        logger.info("AudioClock started")

    def stop(self) -> None:
        """Freeze time at the current frame"""
        with self._lock:
            if not self._running:
                return
            self._running = False
        logger.info("AudioClock stopped")

    def reset(self) -> None:
        """Back to frame zero; the running flag is kept"""
        with self._lock:
            self._frames = 0
        logger.info("AudioClock reset")

    def update_frame_count(self, frames: int) -> None:
        """Called by the render path after each block. Ignored while stopped."""
        with self._lock:
            if self._running:
                self._frames += int(frames)

    def advance_time_for_testing(self, seconds: float) -> None:
        """Move time forward without rendering audio (tests, offline tools)"""
        self.update_frame_count(self.seconds_to_frames(seconds))

    def seconds_to_frames(self, seconds: float) -> int:
        return int(round(seconds * self.sample_rate))

    def get_current_time(self) -> float:
        """Seconds of audio rendered since the clock started"""
        with self._lock:
            return self._frames / self.sample_rate

    def get_total_frames(self) -> int:
        with self._lock:
            return self._frames

    def get_state(self) -> ClockState:
        with self._lock:
            return ClockState(
                is_running=self._running,
                current_time=self._frames / self.sample_rate,
                total_frames=self._frames,
                sample_rate=self.sample_rate
            )

    def is_running(self) -> bool:
        with self._lock:
            return self._running
