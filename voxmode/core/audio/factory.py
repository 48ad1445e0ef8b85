"""Factory helpers for constructing audio capture instances."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from ...config import get_settings
from ...logging import get_logger
from .base import AudioCapture, CaptureError, CaptureInfo

LOGGER = get_logger(__name__)


class CaptureConfigurationError(CaptureError):
    """Raised when a capture stream cannot be configured."""


@dataclass
class CaptureRequest:
    """Description of the capture the session wants to open."""

    device: Optional[str] = None
    sample_rate: Optional[int] = None
    channels: Optional[int] = None
    backend: Optional[str] = None
    chunk_seconds: Optional[float] = None
    source_path: Optional[Path] = None
    realtime: bool = True


def _parse_device(device: Optional[str]) -> Optional[int | str]:
    if device is None:
        return None
    device = device.strip()
    if not device or device.lower() == "default":
        return None
    if device.isdigit():
        return int(device)
    return device


def create_capture(request: CaptureRequest) -> AudioCapture:
    """Create an :class:`AudioCapture` implementation for the given request."""

    settings = get_settings()
    backend = (request.backend or settings.capture_backend or "").strip().lower()
    device = request.device if request.device is not None else settings.input_device
    info = CaptureInfo(
        name="microphone",
        sample_rate=request.sample_rate or settings.sample_rate,
        channels=request.channels or settings.channels,
        device=device or "default",
    )

    if backend == "sounddevice":
        try:
            from .sounddevice_backend import SoundDeviceCapture
        except ImportError as exc:  # pragma: no cover - optional dependency
            raise CaptureConfigurationError("sounddevice dependency is required for audio capture") from exc
        block_size = max(int(info.sample_rate * (request.chunk_seconds or settings.chunk_seconds)), 1)
        return SoundDeviceCapture(info=info, device=_parse_device(device), block_size=block_size)

    if backend == "wavefile":
        if request.source_path is None:
            raise CaptureConfigurationError("wavefile backend requires a source path")
        from .wavefile_backend import WaveFileCapture

        info.name = Path(request.source_path).stem
        info.device = str(request.source_path)
        return WaveFileCapture(
            info=info,
            path=Path(request.source_path),
            chunk_seconds=request.chunk_seconds or settings.chunk_seconds,
            realtime=request.realtime,
        )

    raise CaptureConfigurationError(f"Unknown audio backend: {backend or '<empty>'}")


__all__ = [
    "CaptureConfigurationError",
    "CaptureRequest",
    "create_capture",
]
