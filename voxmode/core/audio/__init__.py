"""Audio capture package."""

from .base import AudioCapture, CaptureError, CaptureInfo

__all__ = ["AudioCapture", "CaptureError", "CaptureInfo"]
