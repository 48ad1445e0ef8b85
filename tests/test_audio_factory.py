from __future__ import annotations

import sys
import types
from pathlib import Path

import numpy as np
import pytest

import voxmode.core.audio.factory as factory_module
from voxmode.core.audio.factory import CaptureConfigurationError, CaptureRequest, create_capture
from voxmode.core.audio.wavefile_backend import WaveFileCapture
from voxmode.utils.audio import write_wave


def test_create_capture_rejects_unknown_backend() -> None:
    with pytest.raises(CaptureConfigurationError) as excinfo:
        create_capture(CaptureRequest(backend="ffmpeg"))

    assert "Unknown audio backend" in str(excinfo.value)


def test_wavefile_backend_requires_path() -> None:
    with pytest.raises(CaptureConfigurationError):
        create_capture(CaptureRequest(backend="wavefile"))


def test_create_capture_returns_wavefile_capture(tmp_path: Path) -> None:
    path = tmp_path / "clip.wav"
    write_wave(path, np.zeros(800, dtype=np.float32), 8000)

    capture = create_capture(CaptureRequest(backend="wavefile", source_path=path, chunk_seconds=0.05, realtime=False))

    assert isinstance(capture, WaveFileCapture)
    capture.start()
    assert capture.info.sample_rate == 8000
    chunks = []
    while not capture.exhausted:
        chunks.append(capture.read(timeout=0))
    assert sum(chunk.shape[0] for chunk in chunks) == 800
    assert capture.read(timeout=0) is None


def test_create_capture_uses_settings_for_sounddevice(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setitem(sys.modules, "sounddevice", types.SimpleNamespace())
    monkeypatch.setenv("VOXMODE_INPUT_DEVICE", "3")
    monkeypatch.setenv("VOXMODE_CHUNK_SECONDS", "0.05")

    capture = create_capture(CaptureRequest())

    assert type(capture).__name__ == "SoundDeviceCapture"
    assert capture._device == 3
    assert capture._block_size == 800
    assert capture.info.sample_rate == 16000


@pytest.mark.parametrize(
    "raw, expected",
    [(None, None), ("default", None), ("  ", None), ("2", 2), ("USB Mic", "USB Mic")],
)
def test_parse_device(raw, expected) -> None:
    assert factory_module._parse_device(raw) == expected
