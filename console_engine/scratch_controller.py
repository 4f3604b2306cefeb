# Manual scratching for the console decks
# Turns pointer angles around the platter into a time scrub of the track

import math
import logging
from typing import Optional

import numpy as np

import config
from .track import Track

logger = logging.getLogger(__name__)


def angle_from_pointer(x: float, y: float, center_x: float, center_y: float) -> float:
    """Angle of the pointer around the platter centre, in degrees (-180, 180]"""
    return math.degrees(math.atan2(y - center_y, x - center_x))


def normalize_angle_delta(delta: float) -> float:
    """Fold a raw angle difference into (-180, 180] so the 0/360 seam reads as a small move"""
    if delta > 180.0:
        delta -= 360.0
    elif delta <= -180.0:
        delta += 360.0
    return delta


def apply_sensitivity(delta: float, exponent: float = config.SCRATCH_SENSITIVITY) -> float:
    """sign(d) * |d|^exponent: fast hand moves travel further than slow ones"""
    if delta == 0.0:
        return 0.0
    return math.copysign(abs(delta) ** exponent, delta)


def angle_to_seconds(scaled_delta: float,
                     seconds_per_revolution: float = config.SCRUB_SECONDS_PER_REVOLUTION) -> float:
    """Convert platter degrees into seconds of audio"""
    return scaled_delta * (seconds_per_revolution / 360.0)


class ScrubMonitor:
    """
    Independently seekable monitoring playhead used while scratching.

    The committed deck position is untouched until the scratch ends; the
    monitor follows every pointer sample and makes it audible by playing
    the stretch of audio between where it last rendered and where the
    playhead is now, squeezed into the next block.
    """

    def __init__(self, track: Track, output_sample_rate: int,
                 max_speed: float = config.SCRATCH_MAX_SPEED):
        self.track = track
        self.output_sample_rate = int(output_sample_rate)
        self.max_speed = float(max_speed)
        self._sr_ratio = track.sample_rate / float(self.output_sample_rate)
        self._playhead = 0.0        # seconds
        self._rendered_frame = 0.0  # track frame the audible output has reached

    @property
    def playhead(self) -> float:
        return self._playhead

    @property
    def duration(self) -> float:
        return self.track.duration

    def seek(self, seconds: float) -> float:
        """Jump without producing scratch audio"""
        self._playhead = max(0.0, min(float(seconds), self.track.duration))
        self._rendered_frame = self._playhead * self.track.sample_rate
        return self._playhead

    def nudge(self, delta_seconds: float) -> float:
        """Move the playhead, clamped to the track. Returns the distance actually moved."""
        before = self._playhead
        self._playhead = max(0.0, min(before + delta_seconds, self.track.duration))
        return self._playhead - before

    def render(self, frames: int) -> np.ndarray:
        out = np.zeros((frames, 2), dtype=np.float32)
        total = self.track.total_frames
        target = min(self._playhead * self.track.sample_rate, total - 1.0)
        travel = target - self._rendered_frame
        if frames <= 0 or abs(travel) < 1e-9:
            return out

        max_travel = self.max_speed * self._sr_ratio * frames
        travel = max(-max_travel, min(travel, max_travel))
        step = travel / frames
        positions = self._rendered_frame + step * np.arange(1, frames + 1, dtype=np.float64)
        positions = np.clip(positions, 0.0, total - 1.0)
        i0 = np.floor(positions).astype(np.int64)
        i1 = np.minimum(i0 + 1, total - 1)
        frac = (positions - i0).astype(np.float32).reshape(-1, 1)
        samples = self.track.samples
        out[:] = samples[i0] * (1.0 - frac) + samples[i1] * frac
        self._rendered_frame = float(positions[-1])
        return out


class ScratchSession:
    """
    One press-and-hold gesture on the platter: begin -> N moves -> end.

    The session is the input capture. It is released exactly once, by
    release(), cancel() (pointer left the window) or leaving a `with`
    block; moves after that are ignored.
    """

    def __init__(self, controller: "ScratchController", angle_degrees: float, start_position: float):
        self._controller = controller
        self.last_angle_degrees = float(angle_degrees)
        self.start_position = start_position
        self.travel_seconds = 0.0
        self.active = True
        self.moves = 0

    def move(self, angle_degrees: float) -> Optional[float]:
        if not self.active:
            return None
        return self._controller._on_move(self, float(angle_degrees))

    def release(self):
        if not self.active:
            return
        self.active = False
        self._controller._on_release(self, cancelled=False)

    def cancel(self):
        if not self.active:
            return
        self.active = False
        self._controller._on_release(self, cancelled=True)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc_type is None:
            self.release()
        else:
            self.cancel()
        return False


class ScratchController:
    """Scratch mode of one deck: enters/leaves scratch and maps angles to time"""

    def __init__(self, deck, sensitivity: float = config.SCRATCH_SENSITIVITY,
                 seconds_per_revolution: float = config.SCRUB_SECONDS_PER_REVOLUTION):
        self.deck = deck
        self.sensitivity = sensitivity
        self.seconds_per_revolution = seconds_per_revolution
        self.session: Optional[ScratchSession] = None

    @property
    def active(self) -> bool:
        return self.session is not None and self.session.active

    def begin(self, angle_degrees: float) -> Optional[ScratchSession]:
        with self.deck._lock:
            if self.active:
                logger.debug(f"Deck {self.deck.deck_id} - Scratch already in progress, ignoring begin")
                return self.session
            position = self.deck._enter_scratch()
            if position is None:
                return None
            self.session = ScratchSession(self, angle_degrees, position)
            logger.debug(f"Deck {self.deck.deck_id} - Scratch begin at {position:.3f}s, angle {angle_degrees:.1f}")
            return self.session

    def move(self, angle_degrees: float) -> Optional[float]:
        session = self.session
        if session is None:
            return None
        return session.move(angle_degrees)

    def end(self):
        if self.session is not None:
            self.session.release()

    def cancel(self):
        if self.session is not None:
            self.session.cancel()

    def abandon(self):
        """Drop the gesture without committing (deck is being reloaded or shut down)"""
        if self.session is not None:
            self.session.active = False
            self.session = None

    def _on_move(self, session: ScratchSession, angle_degrees: float) -> float:
        with self.deck._lock:
            raw = normalize_angle_delta(angle_degrees - session.last_angle_degrees)
            scaled = apply_sensitivity(raw, self.sensitivity)
            seconds = angle_to_seconds(scaled, self.seconds_per_revolution)
            session.last_angle_degrees = angle_degrees
            session.moves += 1
            return self.deck._apply_scrub(scaled, seconds)

    def _on_release(self, session: ScratchSession, cancelled: bool):
        with self.deck._lock:
            if self.session is session:
                self.session = None
            self.deck._exit_scratch(cancelled=cancelled)
            session.travel_seconds = self.deck.state.paused_at_seconds - session.start_position
            logger.debug(f"Deck {self.deck.deck_id} - Scratch {'cancelled' if cancelled else 'released'} "
                         f"after {session.moves} moves, travel {session.travel_seconds:+.3f}s")
