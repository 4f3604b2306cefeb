#!/usr/bin/env python3
"""
Capture ring buffer between the render timeline and a recorder.

The render thread writes every master block; an external recorder drains
at its own pace. The writer must never wait on the reader, so a full
buffer gives up its oldest frames (counted in `dropped_frames`) instead
of refusing the write.
"""

import numpy as np
import threading
import logging

logger = logging.getLogger(__name__)

class RingBuffer:
    """Fixed-capacity FIFO of (frames, channels) float32 audio"""

    def __init__(self, capacity_frames, channels=2, overwrite=True):
        """
        Args:
            capacity_frames: Number of frames held before the oldest are lost
            channels: Number of audio channels (default 2 for stereo)
            overwrite: False turns the buffer into a plain bounded FIFO that
                refuses frames it has no room for
        """
        if int(capacity_frames) <= 0:
            raise ValueError(f"capacity_frames must be positive, got {capacity_frames}")
        self.channels = channels
        self.cap = int(capacity_frames)
        self.overwrite = overwrite
        self._data = np.zeros((self.cap, channels), dtype=np.float32)
        self._head = 0   # oldest unread frame
        self._count = 0  # unread frames
        self.dropped_frames = 0
        self._lock = threading.Lock()

    def _as_frames(self, x):
        x = np.asarray(x, dtype=np.float32)
        if x.ndim == 1:
            return np.repeat(x[:, None], self.channels, axis=1)
        if x.shape[1] != self.channels:
            raise ValueError(f"Expected {self.channels} channels, got {x.shape[1]}")
        return x

    def write(self, x):
        """Append frames; returns how many were stored"""
        x = self._as_frames(x)
        with self._lock:
            if self.overwrite:
                if len(x) > self.cap:
                    self.dropped_frames += len(x) - self.cap
                    x = x[-self.cap:]
                excess = self._count + len(x) - self.cap
                if excess > 0:
                    self._head = (self._head + excess) % self.cap
                    self._count -= excess
                    self.dropped_frames += excess
            else:
                x = x[:self.cap - self._count]
            if len(x) == 0:
                return 0
            # Indices of the free slots, wrapping past the end of the array
            slots = (self._head + self._count + np.arange(len(x))) % self.cap
            self._data[slots] = x
            self._count += len(x)
            return len(x)

    def read(self, n):
        """
        Take up to n frames. Returns (data, frames_read); rows past
        frames_read are silence.
        """
        out = np.zeros((n, self.channels), dtype=np.float32)
        with self._lock:
            taken = min(n, self._count)
            if taken:
                slots = (self._head + np.arange(taken)) % self.cap
                out[:taken] = self._data[slots]
                self._head = (self._head + taken) % self.cap
                self._count -= taken
            return out, taken

    def available_read(self):
        with self._lock:
            return self._count

    def available_write(self):
        """Frames that fit before anything is dropped"""
        with self._lock:
            return self.cap - self._count

    def clear(self):
        with self._lock:
            self._head = 0
            self._count = 0

    def get_stats(self):
        """Buffer statistics for debugging"""
        with self._lock:
            return {
                'capacity': self.cap,
                'size': self._count,
                'dropped_frames': self.dropped_frames,
                'channels': self.channels
            }
