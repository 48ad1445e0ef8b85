"""Context-aware dictation engine."""

__version__ = "0.1.0"
