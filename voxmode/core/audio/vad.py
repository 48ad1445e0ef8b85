"""Energy based voice activity detection."""

from __future__ import annotations

from collections import deque
from enum import Enum
from typing import Deque, Optional, Tuple

import numpy as np


class VadEvent(str, Enum):
    SPEECH_STARTED = "speech_started"
    SILENCE = "silence"


class VoiceActivityDetector:
    """Rolling RMS window over recent audio.

    Time is measured in audio frames rather than wall-clock time so the detector
    behaves identically for live devices and replayed files. ``SILENCE`` is
    reported once per speech segment, after the window has stayed below the
    threshold for longer than ``grace_seconds``.
    """

    def __init__(
        self,
        sample_rate: int,
        threshold: float = 0.01,
        window_seconds: float = 0.3,
        grace_seconds: float = 1.5,
    ) -> None:
        if sample_rate <= 0:
            raise ValueError("sample_rate must be positive")
        self.sample_rate = sample_rate
        self.threshold = threshold
        self.grace_seconds = grace_seconds
        self._window_frames = max(int(sample_rate * window_seconds), 1)
        self._window: Deque[Tuple[int, float]] = deque()
        self._window_count = 0
        self._window_energy = 0.0
        self._frames_seen = 0
        self._in_speech = False
        self._heard_speech = False
        self._silence_since: Optional[int] = None
        self._silence_reported = False

    @property
    def is_speech(self) -> bool:
        return self._in_speech

    @property
    def heard_speech(self) -> bool:
        return self._heard_speech

    @property
    def level(self) -> float:
        if self._window_count == 0:
            return 0.0
        return float(np.sqrt(self._window_energy / self._window_count))

    def reset(self) -> None:
        self._window.clear()
        self._window_count = 0
        self._window_energy = 0.0
        self._frames_seen = 0
        self._in_speech = False
        self._heard_speech = False
        self._silence_since = None
        self._silence_reported = False

    def process(self, chunk: np.ndarray) -> Optional[VadEvent]:
        """Feed one chunk and return the transition it caused, if any."""

        mono = np.asarray(chunk, dtype=np.float64)
        if mono.ndim > 1:
            mono = mono.mean(axis=1)
        count = int(mono.shape[0])
        if count == 0:
            return None

        energy = float(np.sum(np.square(mono)))
        self._window.append((count, energy))
        self._window_count += count
        self._window_energy += energy
        while self._window_count - self._window[0][0] >= self._window_frames:
            dropped, dropped_energy = self._window.popleft()
            self._window_count -= dropped
            self._window_energy -= dropped_energy
        self._frames_seen += count

        speaking = self.level >= self.threshold
        if speaking:
            self._silence_since = None
            self._silence_reported = False
            if not self._in_speech:
                self._in_speech = True
                self._heard_speech = True
                return VadEvent.SPEECH_STARTED
            return None

        self._in_speech = False
        if not self._heard_speech or self._silence_reported:
            return None
        if self._silence_since is None:
            self._silence_since = self._frames_seen - count
        silent_for = (self._frames_seen - self._silence_since) / float(self.sample_rate)
        if silent_for >= self.grace_seconds:
            self._silence_reported = True
            return VadEvent.SILENCE
        return None


__all__ = ["VadEvent", "VoiceActivityDetector"]
