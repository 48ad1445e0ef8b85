"""Capture engine that owns the input device for the duration of a recording."""

from __future__ import annotations

import contextlib
import queue
import threading
import time
from typing import Callable, Dict, Iterator, List, Optional

import numpy as np

from ...config import get_settings
from ...data.models import AudioArtifact, AudioFrame
from ...logging import get_logger
from .base import AudioCapture, CaptureError
from .factory import CaptureRequest, create_capture
from .vad import VadEvent, VoiceActivityDetector

LOGGER = get_logger(__name__)

_DEVICE_OWNERS: Dict[str, "AudioCaptureEngine"] = {}
_DEVICE_LOCK = threading.Lock()

_STOP = object()


def _device_key(capture: AudioCapture) -> str:
    return f"{type(capture).__name__}:{capture.info.device or 'default'}"


def _default_vad_factory(sample_rate: int) -> Optional[VoiceActivityDetector]:
    settings = get_settings()
    if not settings.vad_enabled:
        return None
    return VoiceActivityDetector(
        sample_rate,
        threshold=settings.vad_threshold,
        window_seconds=settings.vad_window_seconds,
        grace_seconds=settings.vad_grace_seconds,
    )


class AudioCaptureEngine:
    """Run a capture on a reader thread, buffering audio and watching for silence.

    Events (``on_silence``, ``on_error``, ``on_source_end``) are delivered on a
    notifier thread, never on the reader thread, so handlers may call
    :meth:`stop` or :meth:`abort` directly.
    """

    def __init__(
        self,
        capture_factory: Callable[[CaptureRequest], AudioCapture] = create_capture,
        vad_factory: Optional[Callable[[int], Optional[VoiceActivityDetector]]] = None,
        on_silence: Optional[Callable[[], None]] = None,
        on_error: Optional[Callable[[CaptureError], None]] = None,
        on_source_end: Optional[Callable[[], None]] = None,
        read_timeout: float = 0.05,
        join_timeout: float = 0.25,
        frame_buffer: int = 256,
    ) -> None:
        self._capture_factory = capture_factory
        self._vad_factory = vad_factory or _default_vad_factory
        self.on_silence = on_silence
        self.on_error = on_error
        self.on_source_end = on_source_end
        self._read_timeout = read_timeout
        self._join_timeout = join_timeout
        self._frame_buffer = frame_buffer

        self._lock = threading.Lock()
        self._capture: Optional[AudioCapture] = None
        self._device_key: Optional[str] = None
        self._vad: Optional[VoiceActivityDetector] = None
        self._chunks: List[np.ndarray] = []
        self._subscribers: List[queue.Queue] = []
        self._stop_event = threading.Event()
        self._reader: Optional[threading.Thread] = None
        self._events: Optional[queue.Queue] = None
        self._notifier: Optional[threading.Thread] = None
        self._level = 0.0

    @property
    def is_running(self) -> bool:
        return self._capture is not None

    @property
    def level(self) -> float:
        return self._level

    @property
    def vad(self) -> Optional[VoiceActivityDetector]:
        return self._vad

    def start(self, request: CaptureRequest) -> Iterator[AudioFrame]:
        """Open the device and return a live frame iterator.

        Raises :class:`CaptureError` if the device cannot be opened or is
        already owned by another engine.
        """

        with self._lock:
            if self._capture is not None:
                raise CaptureError("Capture engine is already running")

            capture = self._capture_factory(request)
            key = _device_key(capture)
            with _DEVICE_LOCK:
                owner = _DEVICE_OWNERS.get(key)
                if owner is not None and owner is not self:
                    raise CaptureError(f"Input device {capture.info.device or 'default'} is already in use")
                _DEVICE_OWNERS[key] = self

            try:
                capture.start()
            except CaptureError:
                self._release_device(key)
                raise
            except Exception as exc:
                self._release_device(key)
                raise CaptureError(f"Failed to start capture: {exc}") from exc

            self._capture = capture
            self._device_key = key
            self._chunks = []
            self._level = 0.0
            self._vad = self._vad_factory(capture.info.sample_rate)
            self._stop_event = threading.Event()
            self._events = queue.Queue()
            self._notifier = threading.Thread(
                target=self._notify_loop,
                args=(self._events, self._snapshot_handlers()),
                name="voxmode-capture-events",
                daemon=True,
            )
            self._reader = threading.Thread(
                target=self._read_loop,
                args=(capture, self._stop_event, self._events, self._chunks),
                name="voxmode-capture",
                daemon=True,
            )
            frames = self._subscribe()
            self._notifier.start()
            self._reader.start()

        LOGGER.info(
            "Capture started on %s (%s Hz, %s channel(s))",
            capture.info.device,
            capture.info.sample_rate,
            capture.info.channels,
        )
        return frames

    def frames(self) -> Iterator[AudioFrame]:
        """Subscribe to live frames; the iterator ends when capture stops."""

        with self._lock:
            if self._capture is None:
                return iter(())
            return self._subscribe()

    def stop(self) -> AudioArtifact:
        """Stop capturing and hand the recorded audio to the caller."""

        capture, chunks = self._shutdown(drain=True)
        sample_rate = capture.info.sample_rate
        channels = capture.info.channels
        if chunks:
            samples = np.concatenate([np.asarray(chunk, dtype=np.float32).reshape(-1, channels) for chunk in chunks])
        else:
            samples = np.zeros((0, channels), dtype=np.float32)
        artifact = AudioArtifact(samples=samples, sample_rate=sample_rate, channels=channels)
        LOGGER.info("Capture stopped; %.2fs of audio recorded", artifact.duration)
        return artifact

    def abort(self) -> None:
        """Stop capturing and discard everything recorded so far."""

        if self._capture is None:
            return
        self._shutdown(drain=False)
        LOGGER.info("Capture aborted; audio discarded")

    def _shutdown(self, drain: bool):
        with self._lock:
            capture = self._capture
            if capture is None:
                raise CaptureError("Capture engine is not running")
            self._stop_event.set()
            reader = self._reader
            if reader is not None and reader is not threading.current_thread():
                # A backend read that ignores read_timeout is abandoned here.
                reader.join(timeout=self._join_timeout)
                if reader.is_alive():
                    LOGGER.warning(
                        "Capture reader still blocked after %.2fs; abandoning it", self._join_timeout
                    )

            with contextlib.suppress(Exception):
                capture.stop()
            if drain:
                while True:
                    try:
                        chunk = capture.read(timeout=0)
                    except CaptureError:
                        break
                    if chunk is None:
                        break
                    self._chunks.append(chunk)
            with contextlib.suppress(Exception):
                capture.close()

            chunks = self._chunks
            self._chunks = []
            self._capture = None
            self._reader = None
            if self._device_key is not None:
                self._release_device(self._device_key)
                self._device_key = None
            for subscriber in self._subscribers:
                self._offer(subscriber, _STOP)
            self._subscribers = []
            if self._events is not None:
                self._events.put(_STOP)
                self._events = None
            self._notifier = None
        return capture, chunks

    def _release_device(self, key: str) -> None:
        with _DEVICE_LOCK:
            if _DEVICE_OWNERS.get(key) is self:
                del _DEVICE_OWNERS[key]

    def _subscribe(self) -> Iterator[AudioFrame]:
        subscriber: queue.Queue = queue.Queue(maxsize=self._frame_buffer)
        self._subscribers.append(subscriber)

        def _iterate() -> Iterator[AudioFrame]:
            while True:
                item = subscriber.get()
                if item is _STOP:
                    return
                yield item

        return _iterate()

    @staticmethod
    def _offer(subscriber: queue.Queue, item) -> None:
        while True:
            try:
                subscriber.put_nowait(item)
                return
            except queue.Full:
                with contextlib.suppress(queue.Empty):
                    subscriber.get_nowait()

    def _read_loop(
        self,
        capture: AudioCapture,
        stop_event: threading.Event,
        events: queue.Queue,
        chunks: List[np.ndarray],
    ) -> None:
        sample_rate = capture.info.sample_rate
        while not stop_event.is_set():
            try:
                chunk = capture.read(timeout=self._read_timeout)
            except CaptureError as exc:
                LOGGER.error("Capture device lost: %s", exc)
                events.put(("error", exc))
                return
            except Exception as exc:  # pragma: no cover - backend specific failures
                LOGGER.exception("Capture read failed")
                events.put(("error", CaptureError(f"Capture read failed: {exc}")))
                return

            if chunk is None:
                if capture.exhausted:
                    events.put(("source_end", None))
                    return
                continue
            if stop_event.is_set():
                chunks.append(chunk)
                return

            chunks.append(chunk)
            frame = AudioFrame(data=chunk, sample_rate=sample_rate, timestamp=time.monotonic())
            for subscriber in list(self._subscribers):
                self._offer(subscriber, frame)

            vad = self._vad
            if vad is None:
                continue
            event = vad.process(chunk)
            self._level = vad.level
            if event is VadEvent.SILENCE:
                LOGGER.debug("Voice activity ended")
                events.put(("silence", None))

    def _snapshot_handlers(self) -> Dict[str, Optional[Callable]]:
        # Bound at start so late events reach the handlers of the capture that raised them.
        return {
            "silence": self.on_silence,
            "source_end": self.on_source_end,
            "error": self.on_error,
        }

    def _notify_loop(self, events: queue.Queue, handlers: Dict[str, Optional[Callable]]) -> None:
        while True:
            item = events.get()
            if item is _STOP:
                return
            kind, payload = item
            handler = handlers.get(kind)
            if handler is None:
                continue
            try:
                if kind == "error":
                    handler(payload)
                else:
                    handler()
            except Exception:
                LOGGER.exception("Capture %s handler raised an exception", kind)


__all__ = ["AudioCaptureEngine"]
