"""Session orchestration."""

from .controller import RecordingSessionController

__all__ = ["RecordingSessionController"]
