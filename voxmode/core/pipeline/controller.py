"""Recording session state machine driving capture, transcription and enhancement."""

from __future__ import annotations

import concurrent.futures
import threading
import time
import uuid
from typing import Callable, List, Optional

from ...config import get_settings
from ...data.models import (
    AudioArtifact,
    ErrorInfo,
    Session,
    SessionOutcome,
    SessionResult,
    SessionState,
    TranscriptResult,
)
from ...errors import (
    AlreadyActiveError,
    CaptureError,
    ConfigurationError,
    EnhancementError,
    NotActiveError,
    TranscriptionError,
    TransitionInProgressError,
)
from ...logging import get_logger
from ...services.enhancement.pipeline import EnhancementPipeline
from ...services.transcription.dispatcher import TranscriptionDispatcher
from ..audio.engine import AudioCaptureEngine
from ..audio.factory import CaptureRequest
from ..power_mode.resolver import ConfigurationResolver

LOGGER = get_logger(__name__)

ResultListener = Callable[[SessionResult], None]

_PROCESSING = (SessionState.TRANSCRIBING, SessionState.ENHANCING)
_SETTLED = (SessionState.IDLE, SessionState.ERROR)


class RecordingSessionController:
    """Serialises session transitions and emits one :class:`SessionResult` per session.

    ``idle -> recording -> transcribing -> enhancing -> idle``; ``error`` is
    reachable from every non-idle state and left with
    :meth:`acknowledge_error`. Requests that do not apply to the current state
    are rejected with a :class:`~voxmode.errors.ControlError`, never queued.

    Capture events and backend completions arrive on other threads and carry
    the session they belong to; anything for a session that is no longer the
    active one is dropped.
    """

    def __init__(
        self,
        resolver: ConfigurationResolver,
        engine: Optional[AudioCaptureEngine] = None,
        dispatcher: Optional[TranscriptionDispatcher] = None,
        enhancer: Optional[EnhancementPipeline] = None,
        capture_request: Optional[CaptureRequest] = None,
        auto_stop: Optional[bool] = None,
        min_duration: Optional[float] = None,
        max_workers: int = 2,
    ) -> None:
        settings = get_settings()
        self.resolver = resolver
        self.engine = engine or AudioCaptureEngine()
        self._owns_dispatcher = dispatcher is None
        self.dispatcher = dispatcher or TranscriptionDispatcher()
        self._owns_enhancer = enhancer is None
        self.enhancer = enhancer or EnhancementPipeline()
        self.capture_request = capture_request or CaptureRequest()
        self.auto_stop = settings.auto_stop_on_silence if auto_stop is None else auto_stop
        self.min_duration = settings.min_recording_seconds if min_duration is None else min_duration

        self._lock = threading.RLock()
        self._settled = threading.Condition(self._lock)
        self._state = SessionState.IDLE
        self._session: Optional[Session] = None
        self._listeners: List[ResultListener] = []
        self._undelivered = 0
        self._workers = concurrent.futures.ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="voxmode-session"
        )
        self._closed = False

    # ------------------------------------------------------------------
    # Read-only state
    # ------------------------------------------------------------------
    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def active_session(self) -> Optional[str]:
        session = self._session
        return session.id if session is not None else None

    def add_listener(self, listener: ResultListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: ResultListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until the controller is ``idle`` or ``error``."""

        with self._settled:
            return self._settled.wait_for(
                lambda: self._state in _SETTLED and not self._undelivered, timeout=timeout
            )

    # ------------------------------------------------------------------
    # Control surface
    # ------------------------------------------------------------------
    def start(self) -> str:
        """Open the capture for a new session and return its id."""

        with self._lock:
            if self._closed:
                raise NotActiveError("Controller is closed")
            if self._state is not SessionState.IDLE:
                raise AlreadyActiveError(f"Session {self.active_session} is {self._state.value}")

            session = Session(id=uuid.uuid4().hex, configuration=self.resolver.current)
            self._bind_engine(session.id)
            try:
                self.engine.start(self.capture_request)
            except CaptureError as exc:
                LOGGER.error("Session %s could not open the input device: %s", session.id, exc)
                failure = exc
                self._session = session
                result = self._finish(session, SessionState.ERROR, SessionOutcome.CAPTURE_FAILED, error=exc)
            else:
                self._session = session
                self._set_state(session, SessionState.RECORDING)
                LOGGER.info(
                    "Session %s recording with %s (%s/%s)",
                    session.id,
                    session.configuration.name,
                    session.configuration.backend,
                    session.configuration.model or "-",
                )
                return session.id

        self._emit(result)
        raise failure

    def stop(self) -> str:
        """Close the capture and hand the recording to the transcription worker."""

        with self._lock:
            session = self._require(SessionState.RECORDING)
            result = self._stop_recording(session)
        if result is not None:
            self._emit(result)
        return session.id

    def cancel(self) -> None:
        """Abandon the active session without emitting a result."""

        with self._lock:
            session = self._session
            if session is None or self._state in _SETTLED:
                raise NotActiveError("No session to cancel")
            session.cancel_event.set()
            if self._state is SessionState.RECORDING:
                self.engine.abort()
            LOGGER.info("Session %s cancelled while %s", session.id, self._state.value)
            self._session = None
            self._set_state(session, SessionState.IDLE)

    def acknowledge_error(self) -> None:
        with self._lock:
            if self._state is not SessionState.ERROR:
                raise NotActiveError(f"Nothing to acknowledge; controller is {self._state.value}")
            session = self._session
            self._session = None
            self._set_state(session, SessionState.IDLE)

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            if self._state not in _SETTLED:
                self.cancel()
            self._closed = True
        self._workers.shutdown(wait=False, cancel_futures=True)
        if self._owns_dispatcher:
            self.dispatcher.close()
        if self._owns_enhancer:
            self.enhancer.close()

    # ------------------------------------------------------------------
    # Capture events
    # ------------------------------------------------------------------
    def _bind_engine(self, session_id: str) -> None:
        self.engine.on_silence = lambda: self._on_silence(session_id)
        self.engine.on_source_end = lambda: self._on_source_end(session_id)
        self.engine.on_error = lambda exc: self._on_capture_error(session_id, exc)

    def _recording(self, session_id: str) -> Optional[Session]:
        session = self._session
        if session is None or session.id != session_id or self._state is not SessionState.RECORDING:
            LOGGER.debug("Ignoring capture event for inactive session %s", session_id)
            return None
        return session

    def _on_silence(self, session_id: str) -> None:
        if not self.auto_stop:
            LOGGER.debug("Silence detected in session %s; auto-stop disabled", session_id)
            return
        with self._lock:
            session = self._recording(session_id)
            if session is None:
                return
            LOGGER.info("Silence detected; stopping session %s", session_id)
            result = self._stop_recording(session)
        if result is not None:
            self._emit(result)

    def _on_source_end(self, session_id: str) -> None:
        with self._lock:
            session = self._recording(session_id)
            if session is None:
                return
            LOGGER.info("Audio source ended; stopping session %s", session_id)
            result = self._stop_recording(session)
        if result is not None:
            self._emit(result)

    def _on_capture_error(self, session_id: str, error: CaptureError) -> None:
        with self._lock:
            session = self._recording(session_id)
            if session is None:
                return
            self.engine.abort()
            result = self._finish(session, SessionState.ERROR, SessionOutcome.CAPTURE_FAILED, error=error)
        self._emit(result)

    # ------------------------------------------------------------------
    # Transitions (lock held)
    # ------------------------------------------------------------------
    def _require(self, state: SessionState) -> Session:
        session = self._session
        if self._state is state and session is not None:
            return session
        if self._state in _PROCESSING:
            raise TransitionInProgressError(f"Session {self.active_session} is {self._state.value}")
        raise NotActiveError(f"No session is {state.value}; controller is {self._state.value}")

    def _set_state(self, session: Optional[Session], state: SessionState) -> None:
        previous = self._state
        self._state = state
        if session is not None:
            session.state = state
        if previous is not state:
            LOGGER.debug(
                "Session %s: %s -> %s", session.id if session else "-", previous.value, state.value
            )
        self._settled.notify_all()

    def _stop_recording(self, session: Session) -> Optional[SessionResult]:
        try:
            artifact = self.engine.stop()
        except CaptureError as exc:
            LOGGER.error("Session %s lost its capture: %s", session.id, exc)
            return self._finish(session, SessionState.ERROR, SessionOutcome.CAPTURE_FAILED, error=exc)
        session.artifact = artifact
        self._set_state(session, SessionState.TRANSCRIBING)
        self._workers.submit(self._process, session, artifact)
        return None

    def _advance(self, session: Session, state: SessionState) -> bool:
        with self._lock:
            if self._session is not session or session.cancelled:
                return False
            self._set_state(session, state)
            return True

    def _finish(
        self,
        session: Session,
        state: SessionState,
        outcome: SessionOutcome,
        transcript: Optional[TranscriptResult] = None,
        enhanced_text: Optional[str] = None,
        error: Optional[BaseException] = None,
        enhancement_error: Optional[BaseException] = None,
    ) -> SessionResult:
        artifact = session.artifact
        result = SessionResult(
            session_id=session.id,
            state=state,
            outcome=outcome,
            transcript_text=transcript.text if transcript is not None else "",
            enhanced_text=enhanced_text,
            error=ErrorInfo.from_exception(error) if error is not None else None,
            enhancement_error=(
                ErrorInfo.from_exception(enhancement_error) if enhancement_error is not None else None
            ),
            configuration=session.configuration,
            transcript=transcript,
            duration=artifact.duration if artifact is not None else 0.0,
            started_at=session.started_at,
            completed_at=time.time(),
        )
        session.result = result
        self._undelivered += 1
        if state is SessionState.IDLE:
            self._session = None
        self._set_state(session, state)
        LOGGER.info("Session %s finished: %s", session.id, outcome.value)
        return result

    def _complete(self, session: Session, state: SessionState, outcome: SessionOutcome, **fields) -> None:
        with self._lock:
            if self._session is not session or session.cancelled:
                LOGGER.info("Dropping late %s result for session %s", outcome.value, session.id)
                return
            result = self._finish(session, state, outcome, **fields)
        self._emit(result)

    # ------------------------------------------------------------------
    # Worker
    # ------------------------------------------------------------------
    def _process(self, session: Session, artifact: AudioArtifact) -> None:
        configuration = session.configuration
        if artifact.duration < self.min_duration:
            LOGGER.info(
                "Session %s captured %.2fs of audio (< %.2fs); nothing to transcribe",
                session.id,
                artifact.duration,
                self.min_duration,
            )
            self._complete(session, SessionState.IDLE, SessionOutcome.NO_SPEECH)
            return

        try:
            transcript = self.dispatcher.transcribe(
                artifact, configuration, session_id=session.id, cancel_event=session.cancel_event
            )
        except concurrent.futures.CancelledError:
            LOGGER.info("Transcription abandoned for cancelled session %s", session.id)
            return
        except ConfigurationError as exc:
            LOGGER.error("Session %s has an invalid configuration: %s", session.id, exc)
            self._complete(session, SessionState.ERROR, SessionOutcome.CONFIGURATION_FAILED, error=exc)
            return
        except TranscriptionError as exc:
            LOGGER.error("Session %s transcription failed: %s", session.id, exc)
            self._complete(session, SessionState.ERROR, SessionOutcome.TRANSCRIPTION_FAILED, error=exc)
            return
        except Exception as exc:
            LOGGER.exception("Unexpected transcription failure in session %s", session.id)
            self._complete(session, SessionState.ERROR, SessionOutcome.TRANSCRIPTION_FAILED, error=exc)
            return

        if not transcript.text.strip():
            self._complete(session, SessionState.IDLE, SessionOutcome.NO_SPEECH, transcript=transcript)
            return

        if not configuration.enhancement_enabled:
            self._complete(session, SessionState.IDLE, SessionOutcome.SUCCEEDED, transcript=transcript)
            return

        if not self._advance(session, SessionState.ENHANCING):
            LOGGER.info("Dropping transcript for inactive session %s", session.id)
            return

        try:
            enhanced = self.enhancer.enhance(
                transcript.text, configuration.prompt, configuration, cancel_event=session.cancel_event
            )
        except concurrent.futures.CancelledError:
            LOGGER.info("Enhancement abandoned for cancelled session %s", session.id)
            return
        except Exception as exc:
            if not isinstance(exc, EnhancementError):
                LOGGER.exception("Unexpected enhancement failure in session %s", session.id)
                exc = EnhancementError(str(exc) or type(exc).__name__)
            LOGGER.warning("Session %s enhancement failed; keeping raw transcript: %s", session.id, exc)
            transcript = transcript.model_copy(update={"enhancement_error": ErrorInfo.from_exception(exc)})
            self._complete(
                session,
                SessionState.IDLE,
                SessionOutcome.ENHANCEMENT_DEGRADED,
                transcript=transcript,
                enhancement_error=exc,
            )
            return

        transcript = transcript.model_copy(update={"enhanced_text": enhanced})
        self._complete(
            session,
            SessionState.IDLE,
            SessionOutcome.SUCCEEDED,
            transcript=transcript,
            enhanced_text=enhanced,
        )

    def _emit(self, result: SessionResult) -> None:
        try:
            for listener in list(self._listeners):
                try:
                    listener(result)
                except Exception:
                    LOGGER.exception("Session listener raised an exception")
        finally:
            with self._settled:
                self._undelivered -= 1
                self._settled.notify_all()


__all__ = ["RecordingSessionController", "ResultListener"]
