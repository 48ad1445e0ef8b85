"""Deepgram pre-recorded audio transcription over HTTP."""

from __future__ import annotations

from typing import Any, Dict, Optional

import httpx

from ...config import get_settings
from ...data.models import AudioArtifact
from ...errors import TranscriptionErrorKind
from ...logging import get_logger
from ...utils.audio import encode_wave
from .base import TranscriptionBackend, remaining

LOGGER = get_logger(__name__)


class DeepgramTranscriptionBackend(TranscriptionBackend):
    backend_id = "deepgram"
    default_model = "nova-2"

    def __init__(self, api_key: Optional[str] = None, url: Optional[str] = None) -> None:
        settings = get_settings()
        self.api_key = api_key or settings.deepgram_api_key
        self.url = url or settings.deepgram_url

    def transcribe(
        self,
        artifact: AudioArtifact,
        model: str,
        deadline: float,
        language: Optional[str] = None,
    ) -> str:
        if not self.api_key:
            raise self._error(TranscriptionErrorKind.AUTH, "Deepgram API key not configured")

        params: Dict[str, str] = {"model": model or self.default_model, "smart_format": "true"}
        if language:
            params["language"] = language
        headers = {
            "Authorization": f"Token {self.api_key}",
            "Content-Type": "audio/wav",
        }
        LOGGER.info("Requesting Deepgram transcription (%s, %.1fs audio)", params["model"], artifact.duration)
        try:
            response = httpx.post(
                self.url,
                params=params,
                headers=headers,
                content=encode_wave(artifact.samples, artifact.sample_rate),
                timeout=remaining(deadline),
            )
            response.raise_for_status()
        except httpx.TimeoutException as exc:
            raise self._error(TranscriptionErrorKind.TIMEOUT, str(exc)) from exc
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            if status in (401, 403):
                raise self._error(TranscriptionErrorKind.AUTH, f"HTTP {status}") from exc
            if status in (400, 404) and "model" in exc.response.text.lower():
                raise self._error(TranscriptionErrorKind.MODEL_UNAVAILABLE, exc.response.text) from exc
            raise self._error(TranscriptionErrorKind.NETWORK, f"HTTP {status}: {exc.response.text}") from exc
        except httpx.HTTPError as exc:
            raise self._error(TranscriptionErrorKind.NETWORK, str(exc)) from exc

        return self._parse_text(response.json())

    def _parse_text(self, payload: Dict[str, Any]) -> str:
        try:
            channels = payload["results"]["channels"]
            alternatives = channels[0]["alternatives"]
            return str(alternatives[0].get("transcript", "") or "").strip()
        except (KeyError, IndexError, TypeError):
            LOGGER.debug("Unexpected Deepgram payload: %s", payload)
            return ""


__all__ = ["DeepgramTranscriptionBackend"]
