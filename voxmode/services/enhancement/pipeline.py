"""Rewrite raw transcripts with an AI provider."""

from __future__ import annotations

import concurrent.futures
import threading
import time
from typing import Callable, Dict, Optional

from ...config import get_settings
from ...data.models import EffectiveConfiguration, OutputMode
from ...errors import ConfigurationError, EnhancementError
from ...logging import get_logger
from ...utils.calls import call_in_thread
from .base import EnhancementProvider
from .filters import filter_output
from .prompts import PromptLibrary

LOGGER = get_logger(__name__)

ProviderFactory = Callable[[], EnhancementProvider]


def _openai() -> EnhancementProvider:
    from .openai_provider import OpenAIEnhancementProvider

    return OpenAIEnhancementProvider()


def _ollama() -> EnhancementProvider:
    from .ollama import OllamaEnhancementProvider

    return OllamaEnhancementProvider()


def _dummy() -> EnhancementProvider:
    from .dummy import DummyEnhancementProvider

    return DummyEnhancementProvider()


ENHANCEMENT_PROVIDERS: Dict[str, ProviderFactory] = {
    "openai": _openai,
    "ollama": _ollama,
    "dummy": _dummy,
}


class EnhancementPipeline:
    """prompt template + transcript -> provider -> output filter."""

    def __init__(
        self,
        providers: Optional[Dict[str, ProviderFactory]] = None,
        library: Optional[PromptLibrary] = None,
        timeout: Optional[float] = None,
        poll_interval: float = 0.05,
    ) -> None:
        self._registry = {
            name.strip().lower(): factory for name, factory in (providers or ENHANCEMENT_PROVIDERS).items()
        }
        self.library = library or PromptLibrary()
        self._timeout = timeout
        self._poll_interval = poll_interval
        self._instances: Dict[str, EnhancementProvider] = {}
        self._lock = threading.Lock()

    @property
    def providers(self) -> list[str]:
        return sorted(self._registry)

    @property
    def timeout(self) -> float:
        if self._timeout is not None:
            return self._timeout
        return get_settings().enhancement_timeout

    def provider(self, provider_id: Optional[str]) -> EnhancementProvider:
        name = (provider_id or get_settings().enhancement_provider).strip().lower()
        with self._lock:
            instance = self._instances.get(name)
            if instance is not None:
                return instance
            factory = self._registry.get(name)
            if factory is None:
                raise ConfigurationError(f"Unknown enhancement provider: {name!r}")
            instance = factory()
            self._instances[name] = instance
            return instance

    def enhance(
        self,
        text: str,
        prompt_ref: str,
        configuration: Optional[EffectiveConfiguration] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> str:
        """Return the enhanced text or raise :class:`EnhancementError`."""

        if not text or not text.strip():
            return text

        try:
            template = self.library.get(prompt_ref)
            provider = self.provider(configuration.enhancement_provider if configuration else None)
        except ConfigurationError as exc:
            raise EnhancementError(str(exc)) from exc

        model = configuration.enhancement_model if configuration else None
        output_mode = configuration.output_mode if configuration else OutputMode.PASTE
        request = template.render(text, model=model)

        timeout = self.timeout
        started = time.monotonic()
        deadline = started + timeout
        future = call_in_thread(
            provider.complete, request, deadline, name=f"voxmode-enhance-{provider.provider_id}"
        )
        while True:
            if cancel_event is not None and cancel_event.is_set():
                raise concurrent.futures.CancelledError()
            wait = min(self._poll_interval, max(deadline - time.monotonic(), 0.0))
            done, _pending = concurrent.futures.wait([future], timeout=wait)
            if done:
                break
            if time.monotonic() >= deadline:
                raise EnhancementError(f"{provider.provider_id} did not answer within {timeout:.1f}s")

        exc = future.exception()
        if isinstance(exc, EnhancementError):
            raise exc
        if exc is not None:
            raise EnhancementError(f"{provider.provider_id} enhancement failed: {exc}") from exc

        enhanced = filter_output(future.result() or "", output_mode)
        LOGGER.info(
            "Applied prompt '%s' via %s in %.2fs",
            template.id,
            provider.provider_id,
            time.monotonic() - started,
        )
        if not enhanced:
            raise EnhancementError(f"{provider.provider_id} returned an empty reply")
        return enhanced

    def close(self) -> None:
        with self._lock:
            self._instances.clear()


__all__ = ["ENHANCEMENT_PROVIDERS", "EnhancementPipeline"]
