"""Transcription backends and dispatch."""

from .base import TranscriptionBackend
from .dispatcher import TRANSCRIPTION_BACKENDS, TranscriptionDispatcher
from .dummy import DummyTranscriptionBackend

__all__ = [
    "DummyTranscriptionBackend",
    "TRANSCRIPTION_BACKENDS",
    "TranscriptionBackend",
    "TranscriptionDispatcher",
]
