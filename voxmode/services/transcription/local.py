"""Local transcription using faster-whisper."""

from __future__ import annotations

import threading
from typing import Dict, Optional

import numpy as np

from ...config import get_settings
from ...data.models import AudioArtifact
from ...errors import TranscriptionErrorKind
from ...logging import get_logger
from ...utils.audio import ensure_mono, resample
from .base import TranscriptionBackend

LOGGER = get_logger(__name__)

WHISPER_SAMPLE_RATE = 16_000


class LocalWhisperBackend(TranscriptionBackend):
    """Run Whisper models in-process; loaded models are kept per model name.

    A running inference cannot be interrupted, so the deadline is enforced by
    the dispatcher rather than inside :meth:`transcribe`.
    """

    backend_id = "local"
    default_model = "base.en"

    def __init__(self, device: Optional[str] = None, compute_type: Optional[str] = None) -> None:
        settings = get_settings()
        self.device = device or settings.local_device
        self.compute_type = compute_type or settings.local_compute_type
        self._models: Dict[str, object] = {}
        self._lock = threading.Lock()

    def _load(self, model_name: str):
        with self._lock:
            model = self._models.get(model_name)
            if model is not None:
                return model
            try:
                from faster_whisper import WhisperModel  # type: ignore
            except ImportError as exc:
                raise self._error(
                    TranscriptionErrorKind.MODEL_UNAVAILABLE,
                    "faster-whisper is required for local transcription (pip install voxmode[local])",
                ) from exc
            LOGGER.info("Loading local Whisper model %s on %s", model_name, self.device)
            try:
                model = WhisperModel(model_name, device=self.device, compute_type=self.compute_type)
            except Exception as exc:
                raise self._error(
                    TranscriptionErrorKind.MODEL_UNAVAILABLE,
                    f"Failed to load model {model_name}: {exc}",
                ) from exc
            self._models[model_name] = model
            return model

    def transcribe(
        self,
        artifact: AudioArtifact,
        model: str,
        deadline: float,
        language: Optional[str] = None,
    ) -> str:
        whisper = self._load(model or self.default_model)
        audio = resample(ensure_mono(artifact.samples), artifact.sample_rate, WHISPER_SAMPLE_RATE)
        audio = np.ascontiguousarray(audio[:, 0], dtype=np.float32)
        segments, info = whisper.transcribe(audio, language=language, beam_size=5, vad_filter=True)
        text = " ".join(segment.text.strip() for segment in segments)
        LOGGER.debug("Local transcription language=%s duration=%.2fs", info.language, info.duration)
        return text.strip()

    def close(self) -> None:
        with self._lock:
            self._models.clear()


__all__ = ["LocalWhisperBackend"]
