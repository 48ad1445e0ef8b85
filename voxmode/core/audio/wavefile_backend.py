"""Capture that replays a WAV file as if it came from a microphone."""

from __future__ import annotations

import time
from pathlib import Path
from typing import Optional

import numpy as np

from ...logging import get_logger
from ...utils.audio import read_wave
from .base import AudioCapture, CaptureError, CaptureInfo

LOGGER = get_logger(__name__)


class WaveFileCapture(AudioCapture):
    """Yield fixed-size chunks from a WAV file.

    ``realtime=True`` paces reads to the file's sample rate so voice activity
    timing behaves like a live device; otherwise chunks are returned as fast as
    they are requested.
    """

    def __init__(self, info: CaptureInfo, path: Path, chunk_seconds: float = 0.1, realtime: bool = False) -> None:
        self.info = info
        self.path = Path(path)
        self._chunk_seconds = max(chunk_seconds, 0.001)
        self._realtime = realtime
        self._data: Optional[np.ndarray] = None
        self._position = 0
        self._next_due = 0.0

    def start(self) -> None:
        if self._data is not None:
            return
        if not self.path.exists():
            raise CaptureError(f"Audio file not found: {self.path}")
        try:
            data, sample_rate = read_wave(self.path)
        except Exception as exc:
            raise CaptureError(f"Failed to read {self.path}: {exc}") from exc
        LOGGER.info("Replaying %s (%d frames @ %d Hz)", self.path, data.shape[0], sample_rate)
        self._data = data
        self._position = 0
        self._next_due = time.monotonic()
        self.info.sample_rate = sample_rate
        self.info.channels = data.shape[1]

    def stop(self) -> None:
        pass

    def close(self) -> None:
        self._data = None

    @property
    def exhausted(self) -> bool:
        return self._data is not None and self._position >= self._data.shape[0]

    def read(self, timeout: Optional[float] = None) -> Optional[np.ndarray]:
        if self._data is None or self.exhausted:
            if timeout and timeout > 0:
                time.sleep(min(timeout, 0.01))
            return None
        if self._realtime:
            wait = self._next_due - time.monotonic()
            if wait > 0:
                if timeout is not None and wait > timeout:
                    time.sleep(max(timeout, 0))
                    return None
                time.sleep(wait)
        step = max(int(self.info.sample_rate * self._chunk_seconds), 1)
        chunk = self._data[self._position : self._position + step]
        self._position += chunk.shape[0]
        self._next_due += chunk.shape[0] / float(self.info.sample_rate)
        return chunk.copy()


__all__ = ["WaveFileCapture"]
