"""Data models used by VoxMode."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional

import numpy as np
from pydantic import BaseModel, ConfigDict, Field

from ..utils.audio import write_wave


class OutputMode(str, Enum):
    PASTE = "paste"
    CLIPBOARD = "clipboard"
    NONE = "none"


class EffectiveConfiguration(BaseModel):
    """Resolved settings used for exactly one session."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = "default"
    backend: str
    model: str = ""
    language: Optional[str] = None
    prompt: Optional[str] = None
    enhancement_provider: Optional[str] = None
    enhancement_model: Optional[str] = None
    output_mode: OutputMode = OutputMode.PASTE

    @property
    def enhancement_enabled(self) -> bool:
        return bool(self.prompt)


class ContextObservation(BaseModel):
    model_config = ConfigDict(frozen=True)

    application: str
    url: Optional[str] = None
    observed_at: float = Field(default_factory=time.monotonic)


class ConfigRule(BaseModel):
    """Power Mode rule mapping an application and/or URL to a configuration."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str
    application: Optional[str] = None
    url: Optional[str] = None
    priority: int = 0
    modified_at: float = 0.0
    enabled: bool = True
    configuration: EffectiveConfiguration


class ErrorInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    category: str
    message: str
    kind: Optional[str] = None

    @classmethod
    def from_exception(cls, exc: BaseException) -> "ErrorInfo":
        kind = getattr(exc, "kind", None)
        return cls(
            category=getattr(exc, "category", "internal"),
            message=str(exc),
            kind=getattr(kind, "value", kind),
        )


class TranscriptResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    session_id: str
    text: str
    backend: str
    model: str = ""
    elapsed: float = 0.0
    enhanced_text: Optional[str] = None
    error: Optional[ErrorInfo] = None
    enhancement_error: Optional[ErrorInfo] = None


class SessionState(str, Enum):
    IDLE = "idle"
    RECORDING = "recording"
    TRANSCRIBING = "transcribing"
    ENHANCING = "enhancing"
    ERROR = "error"


class SessionOutcome(str, Enum):
    SUCCEEDED = "succeeded"
    NO_SPEECH = "no_speech"
    TRANSCRIPTION_FAILED = "transcription_failed"
    ENHANCEMENT_DEGRADED = "enhancement_degraded"
    CAPTURE_FAILED = "capture_failed"
    CONFIGURATION_FAILED = "configuration_failed"


class SessionResult(BaseModel):
    """Structured result emitted once per completed session."""

    model_config = ConfigDict(frozen=True)

    session_id: str
    state: SessionState
    outcome: SessionOutcome
    transcript_text: str = ""
    enhanced_text: Optional[str] = None
    error: Optional[ErrorInfo] = None
    enhancement_error: Optional[ErrorInfo] = None
    configuration: Optional[EffectiveConfiguration] = None
    transcript: Optional[TranscriptResult] = None
    duration: float = 0.0
    started_at: float = 0.0
    completed_at: float = 0.0

    @property
    def final_text(self) -> str:
        if self.enhanced_text:
            return self.enhanced_text
        return self.transcript_text


@dataclass
class AudioFrame:
    data: np.ndarray
    sample_rate: int
    timestamp: float


@dataclass
class AudioArtifact:
    """Captured audio handed from the capture engine to the dispatcher."""

    samples: np.ndarray
    sample_rate: int
    channels: int
    path: Optional[Path] = None

    def __post_init__(self) -> None:
        self.samples = np.asarray(self.samples, dtype=np.float32)
        if self.samples.ndim == 1:
            self.samples = self.samples.reshape(-1, 1)
        self.samples.setflags(write=False)

    @property
    def frames(self) -> int:
        return int(self.samples.shape[0])

    @property
    def duration(self) -> float:
        if self.sample_rate <= 0:
            return 0.0
        return self.frames / float(self.sample_rate)

    def write_wave(self, path: Path) -> Path:
        """Write the samples as 16-bit PCM to ``path``."""

        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        write_wave(path, self.samples, self.sample_rate)
        return path


@dataclass
class Session:
    id: str
    configuration: EffectiveConfiguration
    state: SessionState = SessionState.RECORDING
    started_at: float = field(default_factory=time.time)
    artifact: Optional[AudioArtifact] = None
    result: Optional[SessionResult] = None
    cancel_event: threading.Event = field(default_factory=threading.Event)

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()


__all__ = [
    "AudioArtifact",
    "AudioFrame",
    "ConfigRule",
    "ContextObservation",
    "EffectiveConfiguration",
    "ErrorInfo",
    "OutputMode",
    "Session",
    "SessionOutcome",
    "SessionResult",
    "SessionState",
    "TranscriptResult",
]
