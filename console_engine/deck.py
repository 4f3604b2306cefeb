# dual-deck-console/console_engine/deck.py
# Playback engine of one deck: voice lifecycle, logical time, pitch, scratch entry/exit

import threading
import logging
from dataclasses import dataclass
from typing import Callable, Dict, Optional

import numpy as np

import config
from .audio_clock import AudioClock
from .deck_state_machine import DeckEvent, DeckState, DeckStateMachine, PlaybackState
from .scratch_controller import ScratchController, ScratchSession, ScrubMonitor
from .signal_graph import DeckSignalGraph
from .track import DecodeFailure, Track, load_track
from .voice import BufferVoice, InvalidStateError

logger = logging.getLogger(__name__)

# Rates at or below zero cannot anchor elapsed time; the voice crawls instead
MIN_PLAYBACK_RATE = 1e-4


@dataclass(frozen=True)
class DeckSnapshot:
    """Read-back for the controls surface"""
    deck_id: str
    state: PlaybackState
    is_playing: bool
    is_scratching: bool
    position_seconds: float
    duration: float
    track_name: Optional[str]
    pitch_percent: float
    pitch_bend: int
    pitch_range: int
    effective_rate: float
    volume: float
    eq: Dict[str, float]
    record_angle: float


class Deck:
    """
    One turntable deck.

    Logical time: while no voice exists `paused_at_seconds` is the
    position. While a voice plays, position = (now - playback_start_time)
    * effective_rate, where `now` is the engine clock. Any rate change
    re-anchors playback_start_time so the position never jumps.
    At most one voice exists per deck at any time.
    """

    def __init__(self, deck_id: str, clock: AudioClock, sample_rate: int = config.SAMPLE_RATE,
                 bus=None, bend_magnitude: float = config.BEND_MAGNITUDE,
                 voice_factory: Callable[..., BufferVoice] = BufferVoice):
        self.deck_id = deck_id
        self.clock = clock
        self.sample_rate = int(sample_rate)
        self.bend_magnitude = float(bend_magnitude)
        self._voice_factory = voice_factory

        self._lock = threading.RLock()
        self.state = DeckState()
        self.state_machine = DeckStateMachine(deck_id, self.state)

        self.track: Optional[Track] = None
        self.monitor: Optional[ScrubMonitor] = None
        self._voice: Optional[BufferVoice] = None
        self._release_tails = []
        self._load_token = 0

        self.graph = DeckSignalGraph(deck_id, self.sample_rate, source=self._render_source,
                                     destination=bus, volume=self.state.volume)
        self.scratch = ScratchController(self)

        logger.info(f"Deck {deck_id} - Initialized ({self.sample_rate} Hz)")

    # ------------------------------------------------------------------ read-back
    @property
    def is_playing(self) -> bool:
        with self._lock:
            return self.state.is_playing

    @property
    def is_scratching(self) -> bool:
        with self._lock:
            return self.state.is_scratching

    @property
    def track_name(self) -> Optional[str]:
        with self._lock:
            return self.state.track_name

    @property
    def voice(self) -> Optional[BufferVoice]:
        with self._lock:
            return self._voice

    @property
    def position_seconds(self) -> float:
        with self._lock:
            return self._current_position()

    def effective_rate(self) -> float:
        with self._lock:
            return self.state.effective_rate(self.bend_magnitude)

    def snapshot(self) -> DeckSnapshot:
        with self._lock:
            return DeckSnapshot(
                deck_id=self.deck_id,
                state=self.state.playback,
                is_playing=self.state.is_playing,
                is_scratching=self.state.is_scratching,
                position_seconds=self._current_position(),
                duration=self.track.duration if self.track else 0.0,
                track_name=self.state.track_name,
                pitch_percent=self.state.pitch_percent,
                pitch_bend=self.state.pitch_bend,
                pitch_range=self.state.pitch_range,
                effective_rate=self.state.effective_rate(self.bend_magnitude),
                volume=self.state.volume,
                eq=dict(self.state.eq),
                record_angle=self.state.record_angle,
            )

    # ------------------------------------------------------------------ loading
    def load_file(self, audio_filepath: str) -> bool:
        """Decode a file and bind it. On failure the deck is left stopped with no track."""
        with self._lock:
            self._load_token += 1
            token = self._load_token
            # Playback stops before decoding starts; a brief silence is expected
            self.scratch.abandon()
            self._teardown_voice(capture_position=False)
            self.track = None
            self.monitor = None
            self.state.is_scratching = False
            self.state.paused_at_seconds = 0.0
            self.state_machine.handle_event(DeckEvent.LOAD)
            self.state.track_name = config.TRACK_LOADING_MARKER
        logger.debug(f"Deck {self.deck_id} - load_file requested for: {audio_filepath}")

        try:
            track = load_track(audio_filepath)
        except DecodeFailure as e:
            logger.error(f"Deck {self.deck_id} - Failed to load {audio_filepath}: {e}")
            with self._lock:
                if token == self._load_token:
                    self.state.track_name = config.TRACK_FAILED_MARKER
            return False

        with self._lock:
            if token != self._load_token:
                logger.info(f"Deck {self.deck_id} - Discarding stale load of {audio_filepath}")
                return False
            self.load(track)
        return True

    def load(self, track: Track):
        """Bind an already decoded track: any state -> STOPPED, position and pitch reset"""
        with self._lock:
            self._load_token += 1
            self.scratch.abandon()
            self._teardown_voice(capture_position=False)
            self.track = track
            self.monitor = ScrubMonitor(track, self.sample_rate)
            self.state.is_scratching = False
            self.state.paused_at_seconds = 0.0
            self.state.playback_start_time = 0.0
            self.state.pitch_percent = 0.0
            self.state.record_angle = 0.0
            self.state.track_name = track.name
            self.state_machine.handle_event(DeckEvent.LOAD)
        logger.info(f"Deck {self.deck_id} - Track '{track.name}' loaded ({track.duration:.2f}s @ {track.sample_rate} Hz)")

    # ------------------------------------------------------------------ transport
    def toggle_play(self) -> bool:
        """Play/pause. Returns False (and does nothing) when no track is loaded."""
        with self._lock:
            if self.track is None:
                logger.info(f"Deck {self.deck_id} - toggle_play ignored: no track loaded")
                return False

            if self.state.is_playing:
                self._teardown_voice(capture_position=True)
                self.state_machine.handle_event(DeckEvent.PAUSE)
                logger.info(f"Deck {self.deck_id} - PAUSE at {self.state.paused_at_seconds:.3f}s")
            else:
                self.state_machine.handle_event(DeckEvent.PLAY)
                # While scratching the voice is created when the platter is released
                if not self.state.is_scratching:
                    self._start_voice()
                logger.info(f"Deck {self.deck_id} - PLAY from {self.state.paused_at_seconds:.3f}s "
                            f"at rate {self.state.effective_rate(self.bend_magnitude):.4f}")
            return True

    def play(self) -> bool:
        with self._lock:
            if self.state.is_playing:
                return True
            return self.toggle_play()

    def pause(self) -> bool:
        with self._lock:
            if not self.state.is_playing:
                return False
            return self.toggle_play()

    # ------------------------------------------------------------------ rate
    def set_pitch(self, percent: float):
        percent = max(config.PITCH_MIN_PERCENT, min(config.PITCH_MAX_PERCENT, float(percent)))
        self._change_rate(lambda: setattr(self.state, 'pitch_percent', percent))
        logger.debug(f"Deck {self.deck_id} - Pitch set to {percent:+.2f}%")

    def reset_pitch(self):
        self.set_pitch(0.0)

    def start_bend(self, direction: int):
        """Momentary nudge: direction > 0 speeds up, < 0 slows down"""
        direction = (direction > 0) - (direction < 0)
        self._change_rate(lambda: setattr(self.state, 'pitch_bend', direction))

    def stop_bend(self):
        self._change_rate(lambda: setattr(self.state, 'pitch_bend', 0))

    def cycle_pitch_range(self) -> int:
        """8 -> 16 -> 50 -> 8. Display scale of the pitch fader only."""
        with self._lock:
            ranges = config.PITCH_RANGES
            current = self.state.pitch_range
            idx = ranges.index(current) if current in ranges else -1
            self.state.pitch_range = ranges[(idx + 1) % len(ranges)]
            return self.state.pitch_range

    def _voice_rate(self) -> float:
        return max(MIN_PLAYBACK_RATE, self.state.effective_rate(self.bend_magnitude))

    def _change_rate(self, mutate: Callable[[], None]):
        with self._lock:
            if self._voice is None:
                mutate()
                return
            # Capture the position under the old rate, then re-anchor with the new one
            position = self._voiced_position()
            mutate()
            rate = self._voice_rate()
            self.state.playback_start_time = self.clock.get_current_time() - position / rate
            self._voice.set_rate(rate)

    # ------------------------------------------------------------------ levels
    def set_volume(self, volume: float):
        with self._lock:
            volume = max(0.0, min(100.0, float(volume)))
            self.state.volume = volume
            self.graph.set_deck_gain(volume)

    def set_eq(self, band: str, level: float) -> float:
        with self._lock:
            gain_db = self.graph.set_eq(band, level)
            self.state.eq[band] = self.graph.get_eq_level(band)
            return gain_db

    # ------------------------------------------------------------------ scratching
    def start_scratch(self, angle_degrees: float) -> Optional[ScratchSession]:
        return self.scratch.begin(angle_degrees)

    def scratch_move(self, angle_degrees: float) -> Optional[float]:
        return self.scratch.move(angle_degrees)

    def stop_scratch(self):
        self.scratch.end()

    def cancel_scratch(self):
        self.scratch.cancel()

    def _enter_scratch(self) -> Optional[float]:
        with self._lock:
            if self.track is None or self.monitor is None:
                logger.debug(f"Deck {self.deck_id} - Scratch ignored: no track loaded")
                return None
            if self.state.is_scratching:
                return None
            # The voice goes first; is_playing stays as the user left it
            self._teardown_voice(capture_position=True)
            self.state.is_scratching = True
            return self.monitor.seek(self.state.paused_at_seconds)

    def _apply_scrub(self, scaled_degrees: float, seconds: float) -> float:
        with self._lock:
            if not self.state.is_scratching or self.monitor is None:
                return self.state.paused_at_seconds
            self.monitor.nudge(seconds)
            self.state.record_angle += scaled_degrees
            return self.monitor.playhead

    def _exit_scratch(self, cancelled: bool = False):
        with self._lock:
            if not self.state.is_scratching:
                return
            self.state.is_scratching = False
            if self.monitor is not None:
                self.state.paused_at_seconds = self.monitor.playhead
            if self.state.is_playing:
                self._start_voice()
            logger.debug(f"Deck {self.deck_id} - Scratch {'cancel' if cancelled else 'release'} committed at {self.state.paused_at_seconds:.3f}s")

    # ------------------------------------------------------------------ voice lifecycle
    def _voiced_position(self) -> float:
        elapsed = self.clock.get_current_time() - self.state.playback_start_time
        return elapsed * self._voice_rate()

    def _current_position(self) -> float:
        if self.state.is_scratching and self.monitor is not None:
            # The scrub playhead is what the user hears and sees while scratching
            return self.monitor.playhead
        if self._voice is None:
            position = self.state.paused_at_seconds
        else:
            position = self._voiced_position()
        duration = self.track.duration if self.track else 0.0
        return max(0.0, min(position, duration))

    def _start_voice(self) -> bool:
        if self._voice is not None or self.track is None:
            return False
        duration = self.track.duration
        offset = self.state.paused_at_seconds % duration if duration > 0 else 0.0
        rate = self._voice_rate()
        voice = self._voice_factory(self.track, self.sample_rate, rate=rate, on_ended=self._on_voice_ended)
        voice.start(offset)
        self._voice = voice
        self.state.paused_at_seconds = offset
        self.state.playback_start_time = self.clock.get_current_time() - offset / rate
        return True

    def _teardown_voice(self, capture_position: bool = True):
        voice = self._voice
        if voice is None:
            return
        if capture_position:
            self.state.paused_at_seconds = self._current_position()
        self._voice = None
        try:
            tail = voice.stop()
        except InvalidStateError:
            # The render thread finalized it (end of track) just before us
            logger.debug(f"Deck {self.deck_id} - Voice already stopped")
            return
        self._release_tails.append(tail)

    def _on_voice_ended(self, voice: BufferVoice):
        with self._lock:
            if voice is not self._voice:
                return
            self._voice = None
            self.state.paused_at_seconds = self.track.duration if self.track else 0.0
            self.state_machine.handle_event(DeckEvent.TRACK_END)
        logger.info(f"Deck {self.deck_id} - Track ended naturally")

    # ------------------------------------------------------------------ render timeline
    def _render_source(self, frames: int) -> np.ndarray:
        with self._lock:
            out = np.zeros((frames, 2), dtype=np.float32)
            voice = self._voice
            if voice is not None:
                out += voice.render(frames)
                if self._voice is voice and not self.state.is_scratching:
                    spin = config.PLATTER_DEGREES_PER_SECOND * voice.rate * frames / self.sample_rate
                    self.state.record_angle = (self.state.record_angle + spin) % 360.0

            if self._release_tails:
                remaining = []
                for tail in self._release_tails:
                    n = min(frames, len(tail))
                    out[:n] += tail[:n]
                    if len(tail) > n:
                        remaining.append(tail[n:])
                self._release_tails = remaining

            if self.state.is_scratching and self.monitor is not None:
                out += self.monitor.render(frames)
            return out

    def render(self, frames: int) -> np.ndarray:
        """Pull one block through the deck's signal graph (voice -> gain -> EQ)"""
        return self.graph.render(frames)

    def shutdown(self):
        logger.debug(f"Deck {self.deck_id} - Shutdown requested.")
        with self._lock:
            self.scratch.abandon()
            self.state.is_scratching = False
            self._teardown_voice(capture_position=True)
            self._release_tails = []
        self.graph.disconnect()
        logger.debug(f"Deck {self.deck_id} - Shutdown complete.")
