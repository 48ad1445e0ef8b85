"""OpenAI-powered transcript enhancement."""

from __future__ import annotations

from typing import Any, Dict, Optional

from ...config import get_settings
from ...errors import EnhancementError
from ...logging import get_logger
from ..transcription.base import remaining
from .base import EnhancementProvider, EnhancementRequest

LOGGER = get_logger(__name__)


class OpenAIEnhancementProvider(EnhancementProvider):
    provider_id = "openai"

    def __init__(self, model: Optional[str] = None, api_key: Optional[str] = None) -> None:
        settings = get_settings()
        self.default_model = model or settings.enhancement_model
        self.api_key = api_key or settings.openai_api_key
        self._client = None

    def _get_client(self):
        if self._client is not None:
            return self._client
        try:
            from openai import OpenAI, OpenAIError  # type: ignore
        except ImportError as exc:  # pragma: no cover - runtime dependency guard
            raise EnhancementError("openai package is required for OpenAI enhancement") from exc
        client_kwargs: Dict[str, Any] = {"max_retries": 0}
        if self.api_key:
            client_kwargs["api_key"] = self.api_key
        try:
            self._client = OpenAI(**client_kwargs)
        except OpenAIError as exc:
            message = str(exc)
            if "api_key" in message.lower():
                raise EnhancementError(
                    "OpenAI API key not configured. Set OPENAI_API_KEY or VOXMODE_OPENAI_API_KEY."
                ) from exc
            raise EnhancementError(f"Failed to initialise OpenAI client: {message}") from exc
        return self._client

    def complete(self, request: EnhancementRequest, deadline: float) -> str:
        client = self._get_client()
        model = request.model or self.default_model
        LOGGER.info("Requesting OpenAI enhancement with %s (%d chars)", model, len(request.transcript))
        try:
            response = client.responses.create(
                model=model,
                input=[
                    {"role": "system", "content": request.system},
                    {"role": "user", "content": request.user},
                ],
                timeout=remaining(deadline),
            )
        except Exception as exc:
            raise EnhancementError(f"OpenAI enhancement failed: {exc}") from exc
        return response.output_text or ""


__all__ = ["OpenAIEnhancementProvider"]
