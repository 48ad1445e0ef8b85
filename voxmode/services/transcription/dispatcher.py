"""Route recorded audio to the backend named by the effective configuration."""

from __future__ import annotations

import concurrent.futures
import threading
import time
from typing import Callable, Dict, Optional

from ...config import get_settings
from ...data.models import AudioArtifact, EffectiveConfiguration, TranscriptResult
from ...errors import ConfigurationError, TranscriptionError, TranscriptionErrorKind
from ...logging import get_logger
from ...utils.calls import call_in_thread
from .base import TranscriptionBackend
from .filters import TranscriptFilter

LOGGER = get_logger(__name__)

BackendFactory = Callable[[], TranscriptionBackend]


def _local() -> TranscriptionBackend:
    from .local import LocalWhisperBackend

    return LocalWhisperBackend()


def _openai() -> TranscriptionBackend:
    from .openai_client import OpenAITranscriptionBackend

    return OpenAITranscriptionBackend()


def _groq() -> TranscriptionBackend:
    from .openai_client import GroqTranscriptionBackend

    return GroqTranscriptionBackend()


def _deepgram() -> TranscriptionBackend:
    from .deepgram import DeepgramTranscriptionBackend

    return DeepgramTranscriptionBackend()


def _native() -> TranscriptionBackend:
    from .native import NativeSpeechBackend

    return NativeSpeechBackend()


def _dummy() -> TranscriptionBackend:
    from .dummy import DummyTranscriptionBackend

    return DummyTranscriptionBackend()


TRANSCRIPTION_BACKENDS: Dict[str, BackendFactory] = {
    "local": _local,
    "openai": _openai,
    "groq": _groq,
    "deepgram": _deepgram,
    "native": _native,
    "dummy": _dummy,
}


def _normalise(name: Optional[str]) -> str:
    return (name or "").strip().lower()


def classify_error(exc: BaseException) -> TranscriptionErrorKind:
    """Map an unexpected backend exception to a transcription error kind."""

    if isinstance(exc, TimeoutError):
        return TranscriptionErrorKind.TIMEOUT
    if isinstance(exc, PermissionError):
        return TranscriptionErrorKind.AUTH
    if isinstance(exc, (ConnectionError, OSError)):
        return TranscriptionErrorKind.NETWORK
    return TranscriptionErrorKind.MODEL_UNAVAILABLE


class TranscriptionDispatcher:
    """Select a backend by identifier and run one deadline-bound call.

    Backend instances are created once per identifier and reused. Each call
    runs on its own thread so the deadline holds even for backends that cannot
    be interrupted; a call that overruns is abandoned, not retried.
    """

    def __init__(
        self,
        registry: Optional[Dict[str, BackendFactory]] = None,
        timeout: Optional[float] = None,
        text_filter: Optional[Callable[[str], str]] = None,
        poll_interval: float = 0.05,
    ) -> None:
        self._registry = {
            _normalise(name): factory for name, factory in (registry or TRANSCRIPTION_BACKENDS).items()
        }
        self._timeout = timeout
        self._filter = text_filter if text_filter is not None else TranscriptFilter()
        self._poll_interval = poll_interval
        self._instances: Dict[str, TranscriptionBackend] = {}
        self._lock = threading.Lock()

    @property
    def backends(self) -> list[str]:
        return sorted(self._registry)

    @property
    def timeout(self) -> float:
        if self._timeout is not None:
            return self._timeout
        return get_settings().transcription_timeout

    def resolve(self, configuration: EffectiveConfiguration) -> TranscriptionBackend:
        """Return the backend for ``configuration.backend``.

        Raises :class:`ConfigurationError` for identifiers with no registered
        backend; there is no fallback.
        """

        backend_id = _normalise(configuration.backend)
        with self._lock:
            backend = self._instances.get(backend_id)
            if backend is not None:
                return backend
            factory = self._registry.get(backend_id)
            if factory is None:
                raise ConfigurationError(
                    f"Unknown transcription backend: {configuration.backend!r} "
                    f"(available: {', '.join(self.backends)})"
                )
            backend = factory()
            self._instances[backend_id] = backend
            return backend

    def transcribe(
        self,
        artifact: AudioArtifact,
        configuration: EffectiveConfiguration,
        session_id: str = "",
        cancel_event: Optional[threading.Event] = None,
    ) -> TranscriptResult:
        """Transcribe ``artifact`` once.

        Raises :class:`ConfigurationError`, :class:`TranscriptionError`, or
        :class:`concurrent.futures.CancelledError` when ``cancel_event`` is set
        before the backend answers.
        """

        backend = self.resolve(configuration)
        backend_id = _normalise(configuration.backend)
        timeout = self.timeout
        started = time.monotonic()
        deadline = started + timeout

        future = call_in_thread(
            backend.transcribe,
            artifact,
            configuration.model,
            deadline,
            configuration.language,
            name=f"voxmode-transcribe-{backend_id}",
        )
        while True:
            if cancel_event is not None and cancel_event.is_set():
                LOGGER.info("Transcription for session %s cancelled; result will be ignored", session_id)
                raise concurrent.futures.CancelledError(session_id)
            wait = min(self._poll_interval, max(deadline - time.monotonic(), 0.0))
            done, _pending = concurrent.futures.wait([future], timeout=wait)
            if not done:
                if time.monotonic() >= deadline:
                    LOGGER.warning("Backend %s exceeded %.1fs deadline", backend_id, timeout)
                    raise TranscriptionError(
                        TranscriptionErrorKind.TIMEOUT,
                        f"no response within {timeout:.1f}s",
                        backend=backend_id,
                    )
                continue

            exc = future.exception()
            if exc is None:
                raw_text = future.result()
                break
            if isinstance(exc, (TranscriptionError, ConfigurationError)):
                raise exc
            LOGGER.error("Backend %s failed: %r", backend_id, exc)
            raise TranscriptionError(
                classify_error(exc), str(exc) or type(exc).__name__, backend=backend_id
            ) from exc

        elapsed = time.monotonic() - started
        text = self._filter(raw_text or "")
        LOGGER.info(
            "Transcribed %.1fs of audio with %s in %.2fs (%d chars)",
            artifact.duration,
            backend_id,
            elapsed,
            len(text),
        )
        return TranscriptResult(
            session_id=session_id,
            text=text,
            backend=backend_id,
            model=configuration.model,
            elapsed=elapsed,
        )

    def close(self) -> None:
        with self._lock:
            for backend in self._instances.values():
                try:
                    backend.close()
                except Exception:
                    LOGGER.exception("Failed to close backend %s", backend.backend_id)
            self._instances.clear()


__all__ = [
    "TRANSCRIPTION_BACKENDS",
    "TranscriptionDispatcher",
    "classify_error",
]
