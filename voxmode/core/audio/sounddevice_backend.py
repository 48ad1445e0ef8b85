"""Microphone capture powered by sounddevice/PortAudio."""

from __future__ import annotations

import contextlib
import queue
import threading
from typing import Optional

import numpy as np

from ...logging import get_logger
from .base import AudioCapture, CaptureError, CaptureInfo

LOGGER = get_logger(__name__)

_FALLBACK_SAMPLE_RATES = (48_000, 44_100, 32_000, 24_000, 22_050, 16_000, 8_000)


class SoundDeviceCapture(AudioCapture):
    """Capture stream using the sounddevice library."""

    def __init__(
        self,
        info: CaptureInfo,
        device: Optional[int | str] = None,
        block_size: int = 1024,
        dtype: str = "float32",
    ) -> None:
        try:
            import sounddevice as sd
        except ImportError as exc:  # pragma: no cover - handled in tests
            raise CaptureError("sounddevice dependency is required for capture") from exc
        except OSError as exc:  # pragma: no cover - PortAudio library missing
            raise CaptureError(f"PortAudio is unavailable: {exc}") from exc

        self._sd = sd
        self.info = info
        self._device = device
        self._block_size = block_size
        self._dtype = dtype
        self._queue: queue.Queue[np.ndarray] = queue.Queue()
        self._stream = None
        self._device_info: Optional[dict] = None
        self._stopping = threading.Event()
        self._lost: Optional[str] = None

    def _callback(self, indata, frames, time_info, status) -> None:  # pragma: no cover - executed in runtime
        if status:
            LOGGER.warning("sounddevice status: %s", status)
        self._queue.put(indata.copy())

    def _finished_callback(self) -> None:  # pragma: no cover - executed in runtime
        if not self._stopping.is_set():
            self._lost = f"Input stream for {self.info.name} on {self._device} ended unexpectedly"
            LOGGER.error(self._lost)

    def start(self) -> None:
        if self._stream is not None:
            return
        LOGGER.info(
            "Starting sounddevice capture for %s using device %s",
            self.info.name,
            self._device,
        )
        self._stopping.clear()
        self._lost = None

        channels = self._resolve_channels()
        last_error: Optional[Exception] = None
        requested = int(self.info.sample_rate)

        for sample_rate in self._resolve_sample_rate_candidates():
            try:
                stream = self._sd.InputStream(
                    samplerate=sample_rate,
                    channels=channels,
                    dtype=self._dtype,
                    blocksize=self._block_size,
                    device=self._device,
                    callback=self._callback,
                    finished_callback=self._finished_callback,
                )
                stream.start()
            except self._sd.PortAudioError as exc:  # pragma: no cover - depends on runtime device
                last_error = exc
                message = str(exc)
                if "sample rate" in message.lower():
                    LOGGER.warning(
                        "sounddevice rejected %s Hz for %s on %s: %s",
                        sample_rate,
                        self.info.name,
                        self._device,
                        message,
                    )
                    continue
                raise CaptureError(f"Failed to open {self._device or 'default input'}: {message}") from exc

            self._stream = stream
            self.info.channels = channels
            if sample_rate != requested:
                LOGGER.warning(
                    "Adjusted sample rate for %s on %s from %s Hz to %s Hz",
                    self.info.name,
                    self._device,
                    requested,
                    sample_rate,
                )
            self.info.sample_rate = sample_rate
            return

        message = f"No supported sample rate for {self.info.name} on {self._device}"
        if last_error is not None:
            message = f"{message} ({last_error})"
        raise CaptureError(message) from last_error

    def stop(self) -> None:
        self._stopping.set()
        if self._stream is not None:
            LOGGER.info("Stopping capture for %s", self.info.name)
            with contextlib.suppress(self._sd.PortAudioError):
                self._stream.stop()

    def close(self) -> None:
        self._stopping.set()
        if self._stream is not None:
            LOGGER.debug("Closing capture stream for %s", self.info.name)
            with contextlib.suppress(self._sd.PortAudioError):
                self._stream.close()
            self._stream = None

    def read(self, timeout: Optional[float] = None) -> Optional[np.ndarray]:
        try:
            if timeout is None or timeout <= 0:
                return self._queue.get_nowait()
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            if self._lost is not None:
                raise CaptureError(self._lost)
            return None

    def _resolve_channels(self) -> int:
        requested = int(self.info.channels) if self.info.channels else 1
        device_info = self._query_device_info()
        if not device_info:
            return max(requested, 1)
        max_channels = int(device_info.get("max_input_channels") or 0)
        if max_channels <= 0:
            raise CaptureError(f"Device {self._device} does not support input channels")
        if requested > max_channels:
            LOGGER.warning(
                "Requested %s channel(s) for %s exceeds device capability (%s)",
                requested,
                self.info.name,
                max_channels,
            )
            return max_channels
        return max(requested, 1)

    def _resolve_sample_rate_candidates(self) -> list[int]:
        candidates: list[int] = []
        requested = int(self.info.sample_rate) if self.info.sample_rate else 0
        if requested > 0:
            candidates.append(requested)

        device_info = self._query_device_info()
        if device_info:
            raw = device_info.get("default_samplerate")
            try:
                default_rate = int(float(raw)) if raw is not None else 0
            except (TypeError, ValueError):
                default_rate = 0
            if default_rate > 0 and default_rate not in candidates:
                candidates.append(default_rate)

        for rate in _FALLBACK_SAMPLE_RATES:
            if rate not in candidates:
                candidates.append(rate)
        return candidates

    def _query_device_info(self) -> Optional[dict]:
        if self._device_info is not None:
            return self._device_info
        try:  # pragma: no cover - depends on runtime availability
            self._device_info = self._sd.query_devices(self._device, "input")
        except (ValueError, self._sd.PortAudioError) as exc:
            raise CaptureError(f"Input device {self._device!r} is unavailable: {exc}") from exc
        return self._device_info


def list_input_devices() -> list[dict]:
    """Return ``{"index", "name", "channels", "default_samplerate"}`` for each input device."""

    try:
        import sounddevice as sd
    except (ImportError, OSError) as exc:  # pragma: no cover - runtime dependency guard
        raise CaptureError(f"sounddevice is unavailable: {exc}") from exc

    devices = []
    for index, device in enumerate(sd.query_devices()):
        channels = int(device.get("max_input_channels") or 0)
        if channels <= 0:
            continue
        devices.append(
            {
                "index": index,
                "name": device.get("name", f"device {index}"),
                "channels": channels,
                "default_samplerate": device.get("default_samplerate"),
            }
        )
    return devices


__all__ = ["SoundDeviceCapture", "list_input_devices"]
