"""Enhancement through a local Ollama server."""

from __future__ import annotations

from typing import Optional

import httpx

from ...config import get_settings
from ...errors import EnhancementError
from ...logging import get_logger
from ..transcription.base import remaining
from .base import EnhancementProvider, EnhancementRequest

LOGGER = get_logger(__name__)


class OllamaEnhancementProvider(EnhancementProvider):
    provider_id = "ollama"
    default_model = "llama3.2"

    def __init__(self, base_url: Optional[str] = None, model: Optional[str] = None) -> None:
        self.base_url = (base_url or get_settings().ollama_url).rstrip("/")
        if model:
            self.default_model = model

    def complete(self, request: EnhancementRequest, deadline: float) -> str:
        model = request.model or self.default_model
        payload = {
            "model": model,
            "stream": False,
            "messages": [
                {"role": "system", "content": request.system},
                {"role": "user", "content": request.user},
            ],
        }
        LOGGER.info("Requesting Ollama enhancement with %s", model)
        try:
            response = httpx.post(f"{self.base_url}/api/chat", json=payload, timeout=remaining(deadline))
            response.raise_for_status()
        except httpx.TimeoutException as exc:
            raise EnhancementError(f"Ollama did not answer in time: {exc}") from exc
        except httpx.HTTPStatusError as exc:
            raise EnhancementError(
                f"Ollama returned HTTP {exc.response.status_code}: {exc.response.text}"
            ) from exc
        except httpx.HTTPError as exc:
            raise EnhancementError(f"Ollama request failed: {exc}") from exc

        data = response.json()
        message = data.get("message") or {}
        return str(message.get("content", "") or "")


__all__ = ["OllamaEnhancementProvider"]
