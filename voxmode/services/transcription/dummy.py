"""Dummy transcription backend for testing or offline usage."""

from __future__ import annotations

from typing import Optional

from ...data.models import AudioArtifact
from .base import TranscriptionBackend


class DummyTranscriptionBackend(TranscriptionBackend):
    """Echo the artifact duration instead of recognising speech."""

    backend_id = "dummy"

    def transcribe(
        self,
        artifact: AudioArtifact,
        model: str,
        deadline: float,
        language: Optional[str] = None,
    ) -> str:
        return f"Dummy transcript of {artifact.duration:.2f} seconds of audio."


__all__ = ["DummyTranscriptionBackend"]
