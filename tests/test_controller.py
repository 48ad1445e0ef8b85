from __future__ import annotations

import time

import pytest

from fakes import CaptureFactory, EchoBackend, RecordingProvider, ScriptedCapture, lose_device, silence, tone
from voxmode.core.audio.base import CaptureError
from voxmode.core.audio.engine import AudioCaptureEngine
from voxmode.core.audio.vad import VoiceActivityDetector
from voxmode.core.pipeline.controller import RecordingSessionController
from voxmode.core.power_mode import ConfigurationResolver
from voxmode.data.models import (
    ConfigRule,
    ContextObservation,
    EffectiveConfiguration,
    SessionOutcome,
    SessionState,
)
from voxmode.data.rules import InMemoryRuleStore
from voxmode.errors import (
    AlreadyActiveError,
    EnhancementError,
    NotActiveError,
    TranscriptionError,
    TranscriptionErrorKind,
    TransitionInProgressError,
)
from voxmode.services.enhancement.pipeline import EnhancementPipeline
from voxmode.services.transcription.dispatcher import TranscriptionDispatcher
from voxmode.services.transcription.dummy import DummyTranscriptionBackend
from voxmode.services.transcription.filters import TranscriptFilter

ECHO = EffectiveConfiguration(name="default", backend="echo")
ENHANCED = EffectiveConfiguration(name="enhanced", backend="echo", prompt="default", enhancement_provider="recording")


def _no_vad(sample_rate: int):
    return None


def _speech(count: int = 5):
    return [tone() for _ in range(count)]


@pytest.fixture
def make_controller():
    created = []

    def factory(
        *captures,
        backend=None,
        provider=None,
        configuration=ECHO,
        rules=(),
        vad_factory=_no_vad,
        timeout=5.0,
        **kwargs,
    ):
        backend = backend or EchoBackend()
        provider = provider or RecordingProvider()
        resolver = ConfigurationResolver(InMemoryRuleStore(rules, default=configuration))
        engine = AudioCaptureEngine(capture_factory=CaptureFactory(*captures), vad_factory=vad_factory)
        dispatcher = TranscriptionDispatcher(
            registry={"echo": lambda: backend, "dummy": DummyTranscriptionBackend},
            timeout=timeout,
            text_filter=TranscriptFilter(remove_fillers=False, replacements={}),
        )
        enhancer = EnhancementPipeline(providers={"recording": lambda: provider}, timeout=5)
        kwargs.setdefault("min_duration", 0.0)
        controller = RecordingSessionController(
            resolver, engine=engine, dispatcher=dispatcher, enhancer=enhancer, **kwargs
        )
        results = []
        controller.add_listener(results.append)
        created.append((controller, dispatcher, enhancer))
        return controller, resolver, results

    yield factory

    for controller, dispatcher, enhancer in created:
        controller.close()
        dispatcher.close()
        enhancer.close()


def test_start_stop_emits_result(make_controller):
    controller, _resolver, results = make_controller(ScriptedCapture(_speech()))

    session_id = controller.start()
    assert controller.state is SessionState.RECORDING
    assert controller.active_session == session_id

    controller.stop()
    assert controller.wait_idle(5)

    assert controller.state is SessionState.IDLE
    assert controller.active_session is None
    [result] = results
    assert result.session_id == session_id
    assert result.outcome is SessionOutcome.SUCCEEDED
    assert result.transcript_text == "hello world"
    assert result.final_text == "hello world"
    assert result.duration == pytest.approx(0.5)


def test_start_while_recording_is_rejected(make_controller):
    controller, _resolver, results = make_controller(ScriptedCapture(_speech()))
    session_id = controller.start()

    with pytest.raises(AlreadyActiveError):
        controller.start()

    assert controller.state is SessionState.RECORDING
    assert controller.active_session == session_id
    controller.stop()
    assert controller.wait_idle(5)
    assert len(results) == 1


def test_requests_during_processing_are_rejected(make_controller):
    backend = EchoBackend(delay=5)
    controller, _resolver, results = make_controller(ScriptedCapture(_speech()), backend=backend)
    controller.start()
    controller.stop()

    assert controller.state is SessionState.TRANSCRIBING
    with pytest.raises(AlreadyActiveError):
        controller.start()
    with pytest.raises(TransitionInProgressError):
        controller.stop()
    with pytest.raises(NotActiveError):
        controller.acknowledge_error()

    backend.release.set()
    assert controller.wait_idle(5)
    assert results[0].outcome is SessionOutcome.SUCCEEDED


def test_control_requests_from_idle(make_controller):
    controller, _resolver, _results = make_controller(ScriptedCapture())

    with pytest.raises(NotActiveError):
        controller.stop()
    with pytest.raises(NotActiveError):
        controller.cancel()
    with pytest.raises(NotActiveError):
        controller.acknowledge_error()


def test_cancel_while_recording_emits_nothing(make_controller):
    first = ScriptedCapture(_speech())
    backend = EchoBackend()
    controller, _resolver, results = make_controller(first, ScriptedCapture(_speech()), backend=backend)

    controller.start()
    controller.cancel()

    assert controller.state is SessionState.IDLE
    assert first.closed
    time.sleep(0.2)
    assert results == []
    assert backend.calls == []

    controller.start()
    controller.stop()
    assert controller.wait_idle(5)
    assert len(results) == 1


def test_cancel_while_transcribing_drops_late_result(make_controller):
    backend = EchoBackend(delay=5)
    controller, _resolver, results = make_controller(ScriptedCapture(_speech()), backend=backend)
    controller.start()
    controller.stop()

    controller.cancel()
    assert controller.state is SessionState.IDLE
    backend.release.set()
    time.sleep(0.3)

    assert results == []
    assert controller.state is SessionState.IDLE


def test_cancel_while_enhancing_drops_late_result(make_controller):
    provider = RecordingProvider(reply="Polished text.", delay=0.5)
    controller, _resolver, results = make_controller(
        ScriptedCapture(_speech()), ScriptedCapture(_speech()), provider=provider, configuration=ENHANCED
    )
    controller.start()
    controller.stop()

    waited = time.monotonic() + 5
    while controller.state is not SessionState.ENHANCING and time.monotonic() < waited:
        time.sleep(0.01)
    assert controller.state is SessionState.ENHANCING

    controller.cancel()
    assert controller.state is SessionState.IDLE
    assert controller.active_session is None
    time.sleep(0.8)

    assert results == []
    assert len(provider.requests) == 1
    assert controller.state is SessionState.IDLE

    controller.start()
    controller.stop()
    assert controller.wait_idle(5)
    [result] = results
    assert result.enhanced_text == "Polished text."


def test_context_change_mid_session_keeps_snapshot(make_controller):
    rules = [
        ConfigRule(
            id="slack",
            application="Slack",
            configuration=EffectiveConfiguration(name="slack", backend="echo", model="slack-model"),
        )
    ]
    backend = EchoBackend()
    controller, resolver, results = make_controller(
        ScriptedCapture(_speech()), ScriptedCapture(_speech()), backend=backend, rules=rules
    )

    controller.start()
    resolver.update(ContextObservation(application="Slack"))
    controller.stop()
    assert controller.wait_idle(5)

    controller.start()
    controller.stop()
    assert controller.wait_idle(5)

    assert [result.configuration.name for result in results] == ["default", "slack"]
    assert [call[1] for call in backend.calls] == ["", "slack-model"]


def test_url_rule_selects_backend_for_session(make_controller):
    rules = [
        ConfigRule(id="safari", application="Safari", priority=50, configuration=EffectiveConfiguration(backend="dummy")),
        ConfigRule(id="github", url="github.com", configuration=EffectiveConfiguration(name="github", backend="echo")),
    ]
    controller, resolver, results = make_controller(ScriptedCapture(_speech()), rules=rules)
    resolver.update(ContextObservation(application="Safari", url="https://github.com/voxmode/voxmode"))

    controller.start()
    controller.stop()
    assert controller.wait_idle(5)

    assert results[0].configuration.name == "github"
    assert results[0].transcript.backend == "echo"


def test_timeout_skips_enhancement(make_controller):
    backend = EchoBackend(delay=5)
    provider = RecordingProvider()
    controller, _resolver, results = make_controller(
        ScriptedCapture(_speech()), backend=backend, provider=provider, configuration=ENHANCED, timeout=0.1
    )

    controller.start()
    controller.stop()
    assert controller.wait_idle(5)

    [result] = results
    assert controller.state is SessionState.ERROR
    assert result.outcome is SessionOutcome.TRANSCRIPTION_FAILED
    assert result.error.category == "transcription"
    assert result.error.kind == TranscriptionErrorKind.TIMEOUT.value
    assert provider.requests == []

    backend.release.set()
    controller.acknowledge_error()
    assert controller.state is SessionState.IDLE


def test_transcription_error_is_reported(make_controller):
    backend = EchoBackend(error=TranscriptionError(TranscriptionErrorKind.AUTH, "bad key", backend="echo"))
    controller, _resolver, results = make_controller(ScriptedCapture(_speech()), backend=backend)

    controller.start()
    controller.stop()
    assert controller.wait_idle(5)

    assert results[0].state is SessionState.ERROR
    assert results[0].error.kind == "auth"
    with pytest.raises(AlreadyActiveError):
        controller.start()


def test_enhancement_success(make_controller):
    provider = RecordingProvider()
    controller, _resolver, results = make_controller(
        ScriptedCapture(_speech()), provider=provider, configuration=ENHANCED
    )

    controller.start()
    controller.stop()
    assert controller.wait_idle(5)

    [result] = results
    assert result.outcome is SessionOutcome.SUCCEEDED
    assert result.transcript_text == "hello world"
    assert result.enhanced_text == "HELLO WORLD"
    assert result.transcript.enhanced_text == "HELLO WORLD"
    assert result.final_text == "HELLO WORLD"
    assert "<TRANSCRIPT>" in provider.requests[0].user


def test_enhancement_failure_keeps_transcript(make_controller):
    provider = RecordingProvider(error=EnhancementError("provider down"))
    controller, _resolver, results = make_controller(
        ScriptedCapture(_speech()), provider=provider, configuration=ENHANCED
    )

    controller.start()
    controller.stop()
    assert controller.wait_idle(5)

    [result] = results
    assert controller.state is SessionState.IDLE
    assert result.outcome is SessionOutcome.ENHANCEMENT_DEGRADED
    assert result.transcript_text == "hello world"
    assert result.enhanced_text is None
    assert result.enhancement_error.message == "provider down"
    assert result.final_text == "hello world"


def test_echo_round_trip_over_silence(make_controller):
    seconds = 3
    capture = ScriptedCapture([silence() for _ in range(seconds * 10)], finite=True)
    controller, _resolver, results = make_controller(
        capture, configuration=EffectiveConfiguration(backend="dummy")
    )

    controller.start()
    assert controller.wait_idle(5)

    [result] = results
    assert result.outcome is SessionOutcome.SUCCEEDED
    assert result.transcript_text == f"Dummy transcript of {seconds:.2f} seconds of audio."
    assert result.duration == pytest.approx(seconds)


def test_voice_activity_stops_session(make_controller):
    capture = ScriptedCapture(_speech(), after=silence)
    controller, _resolver, results = make_controller(
        capture,
        vad_factory=lambda sr: VoiceActivityDetector(sr, window_seconds=0.1, grace_seconds=0.3),
        auto_stop=True,
    )

    controller.start()
    assert controller.wait_idle(5)

    assert results[0].outcome is SessionOutcome.SUCCEEDED


def test_silence_is_ignored_without_auto_stop(make_controller):
    capture = ScriptedCapture(_speech(), after=silence)
    controller, _resolver, results = make_controller(
        capture,
        vad_factory=lambda sr: VoiceActivityDetector(sr, window_seconds=0.1, grace_seconds=0.1),
        auto_stop=False,
    )

    controller.start()
    time.sleep(0.3)
    assert controller.state is SessionState.RECORDING
    assert results == []

    controller.stop()
    assert controller.wait_idle(5)
    assert len(results) == 1


def test_capture_failure_on_start(make_controller):
    broken = ScriptedCapture(start_error=OSError("microphone permission denied"))
    controller, _resolver, results = make_controller(broken)

    with pytest.raises(CaptureError):
        controller.start()

    assert controller.state is SessionState.ERROR
    assert results[0].outcome is SessionOutcome.CAPTURE_FAILED
    assert results[0].error.category == "capture"
    controller.acknowledge_error()
    assert controller.state is SessionState.IDLE


def test_device_loss_moves_to_error(make_controller):
    capture = ScriptedCapture([tone()], after=lose_device)
    controller, _resolver, results = make_controller(capture)

    controller.start()
    assert controller.wait_idle(5)

    assert controller.state is SessionState.ERROR
    assert results[0].outcome is SessionOutcome.CAPTURE_FAILED
    assert "unplugged" in results[0].error.message


def test_unknown_backend_is_configuration_failure(make_controller):
    controller, _resolver, results = make_controller(
        ScriptedCapture(_speech()), configuration=EffectiveConfiguration(backend="carrier-pigeon")
    )

    controller.start()
    controller.stop()
    assert controller.wait_idle(5)

    assert results[0].outcome is SessionOutcome.CONFIGURATION_FAILED
    assert results[0].state is SessionState.ERROR


def test_short_recording_is_no_speech(make_controller):
    backend = EchoBackend()
    controller, _resolver, results = make_controller(
        ScriptedCapture([tone()]), backend=backend, min_duration=1.0
    )

    controller.start()
    controller.stop()
    assert controller.wait_idle(5)

    assert results[0].outcome is SessionOutcome.NO_SPEECH
    assert results[0].state is SessionState.IDLE
    assert backend.calls == []


def test_empty_transcript_is_no_speech(make_controller):
    controller, _resolver, results = make_controller(ScriptedCapture(_speech()), backend=EchoBackend(text="[BLANK_AUDIO]"))

    controller.start()
    controller.stop()
    assert controller.wait_idle(5)

    assert results[0].outcome is SessionOutcome.NO_SPEECH
    assert results[0].transcript_text == ""


def test_listener_errors_are_contained(make_controller):
    controller, _resolver, results = make_controller(ScriptedCapture(_speech()))

    def broken(result):
        raise RuntimeError("listener bug")

    controller.remove_listener(results.append)
    controller.add_listener(broken)
    controller.add_listener(results.append)

    controller.start()
    controller.stop()
    assert controller.wait_idle(5)
    assert len(results) == 1
