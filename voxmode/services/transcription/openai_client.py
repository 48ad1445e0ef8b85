"""OpenAI powered transcription, also used for OpenAI-compatible providers."""

from __future__ import annotations

import threading
from typing import Any, Dict, Optional

from ...config import get_settings
from ...data.models import AudioArtifact
from ...errors import TranscriptionError, TranscriptionErrorKind
from ...logging import get_logger
from ...utils.audio import encode_wave
from .base import TranscriptionBackend, remaining

LOGGER = get_logger(__name__)


class OpenAITranscriptionBackend(TranscriptionBackend):
    backend_id = "openai"
    default_model = "gpt-4o-mini-transcribe"

    def __init__(self, api_key: Optional[str] = None, base_url: Optional[str] = None) -> None:
        settings = get_settings()
        self.api_key = api_key or settings.openai_api_key
        self.base_url = base_url
        self._client = None
        self._client_lock = threading.Lock()

    def _get_client(self):
        with self._client_lock:
            if self._client is not None:
                return self._client
            try:
                from openai import OpenAI, OpenAIError  # type: ignore
            except ImportError as exc:  # pragma: no cover - runtime dependency guard
                raise self._error(
                    TranscriptionErrorKind.MODEL_UNAVAILABLE,
                    "openai package is required for this backend",
                ) from exc
            client_kwargs: Dict[str, Any] = {"max_retries": 0}
            if self.api_key:
                client_kwargs["api_key"] = self.api_key
            if self.base_url:
                client_kwargs["base_url"] = self.base_url
            try:
                self._client = OpenAI(**client_kwargs)
            except OpenAIError as exc:
                message = str(exc)
                if "api_key" in message.lower():
                    raise self._error(
                        TranscriptionErrorKind.AUTH,
                        f"{self.backend_id} API key not configured",
                    ) from exc
                raise self._error(TranscriptionErrorKind.NETWORK, message) from exc
            return self._client

    def transcribe(
        self,
        artifact: AudioArtifact,
        model: str,
        deadline: float,
        language: Optional[str] = None,
    ) -> str:
        client = self._get_client()
        model = model or self.default_model
        payload = encode_wave(artifact.samples, artifact.sample_rate)
        LOGGER.info(
            "Requesting %s transcription (%s, %.1fs audio)", self.backend_id, model, artifact.duration
        )

        request: Dict[str, Any] = {
            "model": model,
            "file": ("audio.wav", payload, "audio/wav"),
            "response_format": "json",
            "timeout": remaining(deadline),
        }
        if language:
            request["language"] = language
        try:
            response = client.audio.transcriptions.create(**request)
        except Exception as exc:
            raise self._translate_error(exc) from exc
        return self._parse_text(response)

    def _translate_error(self, exc: Exception) -> TranscriptionError:
        try:
            import openai  # type: ignore
        except ImportError:  # pragma: no cover - runtime dependency guard
            openai = None

        if openai is not None:
            if isinstance(exc, openai.APITimeoutError):
                return self._error(TranscriptionErrorKind.TIMEOUT, str(exc))
            if isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError)):
                return self._error(TranscriptionErrorKind.AUTH, str(exc))
            if isinstance(exc, openai.NotFoundError):
                return self._error(TranscriptionErrorKind.MODEL_UNAVAILABLE, str(exc))
            if isinstance(exc, openai.BadRequestError) and "model" in str(exc).lower():
                return self._error(TranscriptionErrorKind.MODEL_UNAVAILABLE, str(exc))
            if isinstance(exc, (openai.APIConnectionError, openai.APIStatusError)):
                return self._error(TranscriptionErrorKind.NETWORK, str(exc))
        if isinstance(exc, TimeoutError):
            return self._error(TranscriptionErrorKind.TIMEOUT, str(exc))
        return self._error(TranscriptionErrorKind.NETWORK, str(exc))

    def _parse_text(self, response: Any) -> str:
        if response is None:
            return ""
        if isinstance(response, str):
            return response.strip()
        if isinstance(response, dict):
            return str(response.get("text", "") or "").strip()
        return str(getattr(response, "text", "") or "").strip()


class GroqTranscriptionBackend(OpenAITranscriptionBackend):
    """Groq exposes an OpenAI-compatible audio endpoint."""

    backend_id = "groq"
    default_model = "whisper-large-v3-turbo"

    def __init__(self, api_key: Optional[str] = None, base_url: Optional[str] = None) -> None:
        settings = get_settings()
        super().__init__(
            api_key=api_key or settings.groq_api_key,
            base_url=base_url or settings.groq_base_url,
        )
        if not self.api_key:
            LOGGER.warning("Groq API key not configured; set VOXMODE_GROQ_API_KEY")

    def _get_client(self):
        if not self.api_key:
            raise self._error(TranscriptionErrorKind.AUTH, "Groq API key not configured")
        return super()._get_client()


__all__ = ["GroqTranscriptionBackend", "OpenAITranscriptionBackend"]
