"""Transcription backend abstractions."""

from __future__ import annotations

import abc
import time
from typing import Optional

from ...data.models import AudioArtifact
from ...errors import TranscriptionError, TranscriptionErrorKind


def remaining(deadline: float, minimum: float = 0.001) -> float:
    """Seconds left until the monotonic ``deadline``."""

    return max(deadline - time.monotonic(), minimum)


class TranscriptionBackend(abc.ABC):
    """Convert an audio artifact into text.

    Implementations must treat the artifact as read-only and must not retry
    failed requests; the caller decides whether to start a new session.
    """

    backend_id: str = "base"

    @abc.abstractmethod
    def transcribe(
        self,
        artifact: AudioArtifact,
        model: str,
        deadline: float,
        language: Optional[str] = None,
    ) -> str:
        raise NotImplementedError

    def close(self) -> None:
        """Release clients or models held by the backend."""

    def _error(self, kind: TranscriptionErrorKind, message: str) -> TranscriptionError:
        return TranscriptionError(kind, message, backend=self.backend_id)


__all__ = ["TranscriptionBackend", "remaining"]
