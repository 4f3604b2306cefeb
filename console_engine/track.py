# Decoded audio tracks for the console decks
# Decoding itself is delegated to librosa (soundfile / audioread backends)

import os
import logging
from dataclasses import dataclass

import numpy as np
import librosa

logger = logging.getLogger(__name__)


class DecodeFailure(Exception):
    """The payload could not be decoded into audio (bad or unsupported file)"""


@dataclass(frozen=True, eq=False)
class Track:
    """Immutable decoded audio: stereo float32 frames plus their sample rate"""
    samples: np.ndarray
    sample_rate: int
    name: str = ""

    @property
    def total_frames(self) -> int:
        return int(self.samples.shape[0])

    @property
    def duration(self) -> float:
        return self.total_frames / float(self.sample_rate)

    @classmethod
    def from_array(cls, samples, sample_rate: int, name: str = "") -> "Track":
        """
        Build a track from an in-memory buffer.

        Accepts mono `(frames,)`, `(frames, 1)`, `(frames, 2)` or the
        channel-first `(2, frames)` layout librosa returns.
        """
        data = np.asarray(samples, dtype=np.float32)
        if data.ndim == 1:
            data = np.column_stack([data, data])
        elif data.ndim == 2:
            if data.shape[0] in (1, 2) and data.shape[1] > 2:
                data = data.T
            if data.shape[1] == 1:
                data = np.column_stack([data[:, 0], data[:, 0]])
            elif data.shape[1] > 2:
                data = data[:, :2]
        else:
            raise DecodeFailure(f"Unsupported audio shape: {data.shape}")

        if data.shape[0] == 0:
            raise DecodeFailure("Decoded audio is empty")
        if int(sample_rate) <= 0:
            raise DecodeFailure(f"Invalid sample rate: {sample_rate}")

        # The buffer is shared with voices and monitors; nobody may write to it
        data = np.ascontiguousarray(data)
        data.setflags(write=False)
        return cls(samples=data, sample_rate=int(sample_rate), name=name)


def load_track(audio_filepath: str) -> Track:
    """Decode an audio file at its native sample rate. Raises DecodeFailure."""
    if not os.path.exists(audio_filepath):
        raise DecodeFailure(f"Audio file not found: {audio_filepath}")

    try:
        samples, sample_rate = librosa.load(audio_filepath, sr=None, mono=False)
    except Exception as e:
        raise DecodeFailure(f"Could not decode {audio_filepath}: {e}") from e

    track = Track.from_array(samples, sample_rate, name=os.path.basename(audio_filepath))
    logger.debug(f"Decoded '{track.name}': {track.total_frames} frames @ {track.sample_rate} Hz ({track.duration:.2f}s)")
    return track
