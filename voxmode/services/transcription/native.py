"""Platform speech engines exposed through the SpeechRecognition package."""

from __future__ import annotations

from typing import Optional

from ...data.models import AudioArtifact
from ...errors import TranscriptionErrorKind
from ...logging import get_logger
from ...utils.audio import ensure_mono, to_pcm16
from .base import TranscriptionBackend, remaining

LOGGER = get_logger(__name__)

_ENGINES = {
    "sphinx": "recognize_sphinx",
    "google": "recognize_google",
}


class NativeSpeechBackend(TranscriptionBackend):
    """``model`` selects the engine: ``sphinx`` (offline) or ``google``."""

    backend_id = "native"
    default_model = "sphinx"

    def __init__(self) -> None:
        self._sr = None

    def _module(self):
        if self._sr is None:
            try:
                import speech_recognition as sr  # type: ignore
            except ImportError as exc:
                raise self._error(
                    TranscriptionErrorKind.MODEL_UNAVAILABLE,
                    "SpeechRecognition is required for the native backend (pip install voxmode[native])",
                ) from exc
            self._sr = sr
        return self._sr

    def transcribe(
        self,
        artifact: AudioArtifact,
        model: str,
        deadline: float,
        language: Optional[str] = None,
    ) -> str:
        sr = self._module()
        engine = (model or self.default_model).strip().lower()
        method_name = _ENGINES.get(engine)
        if method_name is None:
            raise self._error(TranscriptionErrorKind.MODEL_UNAVAILABLE, f"Unknown native engine: {engine}")

        recognizer = sr.Recognizer()
        recognizer.operation_timeout = remaining(deadline)
        audio = sr.AudioData(to_pcm16(ensure_mono(artifact.samples)), artifact.sample_rate, 2)
        kwargs = {"language": language} if language else {}
        LOGGER.info("Requesting native %s recognition (%.1fs audio)", engine, artifact.duration)
        try:
            return str(getattr(recognizer, method_name)(audio, **kwargs) or "").strip()
        except sr.UnknownValueError:
            return ""
        except sr.RequestError as exc:
            message = str(exc)
            if "missing" in message.lower() or "not installed" in message.lower():
                raise self._error(TranscriptionErrorKind.MODEL_UNAVAILABLE, message) from exc
            raise self._error(TranscriptionErrorKind.NETWORK, message) from exc
        except sr.WaitTimeoutError as exc:
            raise self._error(TranscriptionErrorKind.TIMEOUT, str(exc)) from exc


__all__ = ["NativeSpeechBackend"]
