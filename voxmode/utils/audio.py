"""Audio processing utilities."""

from __future__ import annotations

import io
import wave
from pathlib import Path
from typing import Tuple

import numpy as np


def read_wave(path: Path) -> Tuple[np.ndarray, int]:
    with wave.open(str(path), "rb") as wf:
        frames = wf.readframes(wf.getnframes())
        channels = wf.getnchannels()
        sample_rate = wf.getframerate()
    data = np.frombuffer(frames, dtype=np.int16).astype(np.float32)
    if channels > 1:
        data = data.reshape(-1, channels)
    else:
        data = data.reshape(-1, 1)
    data /= 32767.0
    return data, sample_rate


def write_wave(path: Path, data: np.ndarray, sample_rate: int) -> None:
    if data.ndim == 1:
        data = data[:, np.newaxis]
    data = np.clip(data, -1.0, 1.0)
    int16 = (data * 32767.0).astype(np.int16)
    with wave.open(str(path), "wb") as wf:
        wf.setnchannels(data.shape[1])
        wf.setsampwidth(2)
        wf.setframerate(sample_rate)
        wf.writeframes(int16.tobytes())


def encode_wave(data: np.ndarray, sample_rate: int) -> bytes:
    """Return an in-memory 16-bit PCM WAV file."""

    if data.ndim == 1:
        data = data[:, np.newaxis]
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wf:
        wf.setnchannels(data.shape[1])
        wf.setsampwidth(2)
        wf.setframerate(sample_rate)
        wf.writeframes(to_pcm16(data))
    return buffer.getvalue()


def to_pcm16(data: np.ndarray) -> bytes:
    """Return little-endian 16-bit PCM bytes for a float array in [-1, 1]."""

    clipped = np.clip(data, -1.0, 1.0)
    return (clipped * 32767.0).astype("<i2").tobytes()


def ensure_mono(data: np.ndarray) -> np.ndarray:
    if data.ndim == 1 or data.shape[1] == 1:
        return data.reshape(-1, 1)
    return data.mean(axis=1, keepdims=True)


def resample(array: np.ndarray, sr: int, target_sr: int) -> np.ndarray:
    """Linear-interpolation resample of a mono column vector."""

    if sr == target_sr:
        return array
    mono = array[:, 0]
    length = mono.shape[0]
    if length == 0:
        return mono.reshape(0, 1)
    target_length = max(int(round(length * target_sr / sr)), 1)
    if target_length == 1:
        return np.full((1, 1), mono[0], dtype=array.dtype)
    original_positions = np.linspace(0, length - 1, num=length)
    target_positions = np.linspace(0, length - 1, num=target_length)
    resampled = np.interp(target_positions, original_positions, mono).astype(array.dtype, copy=False)
    return resampled.reshape(-1, 1)


def rms(data: np.ndarray) -> float:
    """Root-mean-square energy of a chunk; ``0.0`` for empty input."""

    if data.size == 0:
        return 0.0
    return float(np.sqrt(np.mean(np.square(data, dtype=np.float64))))


__all__ = [
    "encode_wave",
    "ensure_mono",
    "read_wave",
    "resample",
    "rms",
    "to_pcm16",
    "write_wave",
]
