"""Error taxonomy shared by the capture, dispatch and control layers."""

from __future__ import annotations

from enum import Enum
from typing import Optional


class VoxModeError(RuntimeError):
    """Base class for all VoxMode errors."""

    category = "internal"


class CaptureError(VoxModeError):
    """Raised when audio capture cannot be initialised or the device is lost."""

    category = "capture"


class ConfigurationError(VoxModeError):
    """Raised for unknown backend identifiers or malformed Power Mode rules."""

    category = "configuration"


class TranscriptionErrorKind(str, Enum):
    TIMEOUT = "timeout"
    AUTH = "auth"
    NETWORK = "network"
    MODEL_UNAVAILABLE = "model_unavailable"


class TranscriptionError(VoxModeError):
    """Raised when a transcription backend call fails."""

    category = "transcription"

    def __init__(self, kind: TranscriptionErrorKind, message: str, backend: Optional[str] = None) -> None:
        self.kind = TranscriptionErrorKind(kind)
        self.backend = backend
        prefix = f"[{backend}] " if backend else ""
        super().__init__(f"{prefix}{self.kind.value}: {message}")
        self.message = message


class EnhancementError(VoxModeError):
    """Raised when AI enhancement fails; attached to results, never fatal."""

    category = "enhancement"


class ControlError(VoxModeError):
    """Raised when a control-surface request is invalid for the current state."""

    category = "control"


class AlreadyActiveError(ControlError):
    """Raised by ``start()`` while another session is active."""


class NotActiveError(ControlError):
    """Raised when no session is in a state the request applies to."""


class TransitionInProgressError(ControlError):
    """Raised when a request arrives while the session is being processed."""


__all__ = [
    "AlreadyActiveError",
    "CaptureError",
    "ConfigurationError",
    "ControlError",
    "EnhancementError",
    "NotActiveError",
    "TranscriptionError",
    "TranscriptionErrorKind",
    "TransitionInProgressError",
    "VoxModeError",
]
