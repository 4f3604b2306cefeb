# dual-deck-console/console_engine/engine.py

import threading
import logging
from typing import Dict, Optional

import numpy as np

from .audio_clock import AudioClock
from .deck import Deck
from .mixer_bus import MixerBus, MixRecorder

logger = logging.getLogger(__name__)


class AudioEngine:
    """
    The console: engine clock, one mixer bus and the decks feeding it.

    render() is the whole render timeline in one call: pull a block from
    the bus (which pulls every deck graph), then advance the clock by the
    frames produced. The output stream calls it from its callback; tests
    and offline bounces call it directly.
    """

    def __init__(self, app_config_module):
        logger.debug("AudioEngine - Initializing...")
        self.app_config = app_config_module
        if self.app_config is None:
            raise ValueError("CRITICAL: AudioEngine requires a valid config module.")

        self.sample_rate = int(self.app_config.SAMPLE_RATE)
        self.blocksize = int(self.app_config.BLOCKSIZE)
        self.channels = int(self.app_config.CHANNELS)

        self.audio_clock = AudioClock(self.sample_rate)
        self.audio_clock.start()
        logger.debug(f"AudioEngine - Created audio clock instance {id(self.audio_clock)}")

        self.bus = MixerBus(self.sample_rate, master_volume=self.app_config.DEFAULT_MASTER_VOLUME,
                            channels=self.channels)
        self.recorder = MixRecorder(self.bus.capture, self.audio_clock)

        self.decks: Dict[str, Deck] = {}
        for deck_id in self.app_config.DECK_IDS:
            self.decks[deck_id] = Deck(deck_id, self.audio_clock, sample_rate=self.sample_rate,
                                       bus=self.bus, bend_magnitude=self.app_config.BEND_MAGNITUDE)

        self._stream = None
        self._stream_lock = threading.Lock()
        self._underrun_logged = False
        self._render_errors = 0

        logger.info(f"AudioEngine - Initialized with decks {list(self.decks.keys())} at {self.sample_rate} Hz")

    # ------------------------------------------------------------------ decks
    def deck(self, deck_id: str) -> Deck:
        try:
            return self.decks[deck_id]
        except KeyError:
            raise KeyError(f"Unknown deck id: {deck_id!r} (have {list(self.decks.keys())})") from None

    def any_deck_playing(self) -> bool:
        return any(deck.is_playing for deck in self.decks.values())

    def set_master_volume(self, volume: float) -> float:
        return self.bus.set_master_volume(volume)

    # ------------------------------------------------------------------ render timeline
    def render(self, frames: int) -> np.ndarray:
        """Render one master block and advance the engine clock past it"""
        block = self.bus.render(frames)
        self.audio_clock.update_frame_count(frames)
        return block

    def render_seconds(self, seconds: float) -> np.ndarray:
        """Offline bounce: render `seconds` of master output in device-sized blocks"""
        total = int(round(seconds * self.sample_rate))
        chunks = []
        done = 0
        while done < total:
            n = min(self.blocksize, total - done)
            chunks.append(self.render(n))
            done += n
        if not chunks:
            return np.zeros((0, self.channels), dtype=np.float32)
        return np.concatenate(chunks, axis=0)

    def _audio_callback(self, outdata, frames, time_info, status):
        """sounddevice callback: render straight into the device buffer"""
        if status and status.output_underflow and not self._underrun_logged:
            logger.warning(f"AudioEngine - Output underflow: {status}")
            self._underrun_logged = True
        try:
            outdata[:] = self.render(frames)
        except Exception as e:
            self._render_errors += 1
            logger.error(f"AudioEngine - Render callback error: {e}")
            outdata[:] = 0

    # ------------------------------------------------------------------ device stream
    @property
    def is_streaming(self) -> bool:
        with self._stream_lock:
            return self._stream is not None and self._stream.active

    def start(self, device=None):
        """Open the output device stream (stereo float32 at config.BLOCKSIZE)"""
        import sounddevice as sd

        with self._stream_lock:
            if self._stream is not None:
                logger.debug("AudioEngine - Output stream already running")
                return
            self._underrun_logged = False
            stream = sd.OutputStream(
                samplerate=self.sample_rate, channels=self.channels, dtype='float32',
                blocksize=self.blocksize, callback=self._audio_callback,
                device=device
            )
            stream.start()
            self._stream = stream
        logger.info(f"AudioEngine - Output stream started ({self.sample_rate} Hz, blocksize {self.blocksize})")

    def stop(self):
        with self._stream_lock:
            stream, self._stream = self._stream, None
        if stream is None:
            return
        try:
            stream.stop()
            stream.close()
        except Exception as e:
            logger.error(f"AudioEngine - Error closing output stream: {e}")
        logger.info("AudioEngine - Output stream stopped")

    def shutdown(self):
        logger.info("AudioEngine - Shutting down...")
        self.stop()
        if self.recorder.is_recording:
            self.recorder.stop()
        for deck_id, deck in self.decks.items():
            logger.debug(f"AudioEngine - Requesting shutdown for deck {deck_id}...")
            deck.shutdown()
        self.audio_clock.stop()
        logger.info("AudioEngine - Shutdown complete.")

    def get_audio_clock_state(self):
        """Current engine clock state (time, frames rendered)"""
        return self.audio_clock.get_state()

    def status(self) -> Dict[str, Optional[dict]]:
        """Per-deck snapshot dicts for status logging"""
        result = {}
        for deck_id, deck in self.decks.items():
            snap = deck.snapshot()
            result[deck_id] = {
                'state': snap.state.name,
                'position': round(snap.position_seconds, 3),
                'track': snap.track_name,
                'rate': round(snap.effective_rate, 4),
            }
        return result
