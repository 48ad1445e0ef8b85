from __future__ import annotations

import concurrent.futures
import threading

import numpy as np
import pytest

from fakes import EchoBackend
from voxmode.data.models import AudioArtifact, EffectiveConfiguration
from voxmode.errors import ConfigurationError, TranscriptionError, TranscriptionErrorKind
from voxmode.services.transcription.dispatcher import TranscriptionDispatcher, classify_error
from voxmode.services.transcription.dummy import DummyTranscriptionBackend
from voxmode.services.transcription.filters import TranscriptFilter


def _artifact(seconds: float = 1.0) -> AudioArtifact:
    return AudioArtifact(samples=np.zeros(int(16000 * seconds), dtype=np.float32), sample_rate=16000, channels=1)


def _dispatcher(backend, **kwargs) -> TranscriptionDispatcher:
    kwargs.setdefault("text_filter", TranscriptFilter(remove_fillers=False, replacements={}))
    return TranscriptionDispatcher(registry={"echo": lambda: backend}, **kwargs)


def test_transcribe_uses_configured_backend():
    backend = EchoBackend("  hello   world ")
    dispatcher = _dispatcher(backend, timeout=5)

    result = dispatcher.transcribe(
        _artifact(), EffectiveConfiguration(backend="Echo", model="m1", language="en"), session_id="s1"
    )

    assert result.text == "hello world"
    assert result.session_id == "s1"
    assert result.backend == "echo"
    assert backend.calls == [(1.0, "m1", "en")]
    dispatcher.close()


def test_backend_instances_are_reused():
    created = []

    def factory():
        created.append(EchoBackend())
        return created[-1]

    dispatcher = TranscriptionDispatcher(registry={"echo": factory}, timeout=5)
    configuration = EffectiveConfiguration(backend="echo")
    dispatcher.transcribe(_artifact(), configuration)
    dispatcher.transcribe(_artifact(), configuration)

    assert len(created) == 1
    dispatcher.close()


def test_unknown_backend_is_a_configuration_error():
    dispatcher = _dispatcher(EchoBackend())

    with pytest.raises(ConfigurationError, match="nonexistent"):
        dispatcher.transcribe(_artifact(), EffectiveConfiguration(backend="nonexistent"))
    dispatcher.close()


def test_deadline_raises_timeout():
    backend = EchoBackend(delay=5)
    dispatcher = _dispatcher(backend, timeout=0.1)

    with pytest.raises(TranscriptionError) as excinfo:
        dispatcher.transcribe(_artifact(), EffectiveConfiguration(backend="echo"))

    assert excinfo.value.kind is TranscriptionErrorKind.TIMEOUT
    assert excinfo.value.backend == "echo"
    backend.release.set()
    dispatcher.close()


def test_abandoned_calls_do_not_delay_later_backends():
    slow = EchoBackend(delay=5)
    dispatcher = TranscriptionDispatcher(
        registry={"slow": lambda: slow, "fast": lambda: EchoBackend("fast answer")},
        timeout=0.2,
        text_filter=TranscriptFilter(remove_fillers=False, replacements={}),
    )
    for _ in range(5):
        with pytest.raises(TranscriptionError):
            dispatcher.transcribe(_artifact(), EffectiveConfiguration(backend="slow"))

    result = dispatcher.transcribe(_artifact(), EffectiveConfiguration(backend="fast"))

    assert result.text == "fast answer"
    assert len(slow.calls) == 5
    slow.release.set()
    dispatcher.close()


def test_typed_backend_errors_pass_through():
    error = TranscriptionError(TranscriptionErrorKind.AUTH, "bad key", backend="echo")
    dispatcher = _dispatcher(EchoBackend(error=error), timeout=5)

    with pytest.raises(TranscriptionError) as excinfo:
        dispatcher.transcribe(_artifact(), EffectiveConfiguration(backend="echo"))

    assert excinfo.value is error
    dispatcher.close()


def test_untyped_backend_errors_are_classified():
    dispatcher = _dispatcher(EchoBackend(error=ConnectionResetError("reset")), timeout=5)

    with pytest.raises(TranscriptionError) as excinfo:
        dispatcher.transcribe(_artifact(), EffectiveConfiguration(backend="echo"))

    assert excinfo.value.kind is TranscriptionErrorKind.NETWORK
    dispatcher.close()


@pytest.mark.parametrize(
    "exc, kind",
    [
        (TimeoutError(), TranscriptionErrorKind.TIMEOUT),
        (PermissionError(), TranscriptionErrorKind.AUTH),
        (OSError(), TranscriptionErrorKind.NETWORK),
        (RuntimeError(), TranscriptionErrorKind.MODEL_UNAVAILABLE),
    ],
)
def test_classify_error(exc, kind):
    assert classify_error(exc) is kind


def test_cancel_event_abandons_call():
    backend = EchoBackend(delay=5)
    dispatcher = _dispatcher(backend, timeout=10)
    cancel = threading.Event()
    timer = threading.Timer(0.1, cancel.set)
    timer.start()

    with pytest.raises(concurrent.futures.CancelledError):
        dispatcher.transcribe(_artifact(), EffectiveConfiguration(backend="echo"), cancel_event=cancel)

    backend.release.set()
    dispatcher.close()


def test_filter_applies_replacements_and_fillers():
    backend = EchoBackend("[BLANK_AUDIO] um so vox mode is uh ready")
    dispatcher = _dispatcher(
        backend,
        timeout=5,
        text_filter=TranscriptFilter(remove_fillers=True, replacements={"vox mode, voks mode": "VoxMode"}),
    )

    result = dispatcher.transcribe(_artifact(), EffectiveConfiguration(backend="echo"))

    assert result.text == "so VoxMode is ready"
    dispatcher.close()


def test_dummy_backend_reports_duration():
    text = DummyTranscriptionBackend().transcribe(_artifact(2.5), "", deadline=0)

    assert text == "Dummy transcript of 2.50 seconds of audio."
