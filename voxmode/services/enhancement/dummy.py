"""Dummy enhancement provider for offline usage."""

from __future__ import annotations

from .base import EnhancementProvider, EnhancementRequest


class DummyEnhancementProvider(EnhancementProvider):
    """Return the transcript with its first letter capitalised."""

    provider_id = "dummy"

    def complete(self, request: EnhancementRequest, deadline: float) -> str:
        text = request.transcript.strip()
        return text[:1].upper() + text[1:]


__all__ = ["DummyEnhancementProvider"]
