"""Clean-up applied to raw transcripts before they leave the dispatcher."""

from __future__ import annotations

import re
from typing import Dict, Iterable, Mapping, Optional

from ...config import get_settings

# [BLANK_AUDIO], (music), *coughs* and similar non-speech annotations.
_NON_SPEECH_RE = re.compile(r"\[[^\]]*\]|\([^)]*\)|\*[^*]+\*|<\|[^|]*\|>")
_WHITESPACE_RE = re.compile(r"\s+")
_SPACE_BEFORE_PUNCT_RE = re.compile(r"\s+([,.!?;:])")

DEFAULT_FILLER_WORDS = ("uh", "um", "uhm", "umm", "er", "erm", "ah", "hmm", "mhm")


def strip_non_speech(text: str) -> str:
    return _NON_SPEECH_RE.sub(" ", text)


def remove_filler_words(text: str, fillers: Iterable[str] = DEFAULT_FILLER_WORDS) -> str:
    words = [re.escape(word) for word in fillers if word]
    if not words:
        return text
    pattern = re.compile(r"\b(?:" + "|".join(words) + r")\b[,.]?", re.IGNORECASE)
    return pattern.sub(" ", text)


def apply_replacements(text: str, replacements: Mapping[str, str]) -> str:
    """Whole-word, case-insensitive dictionary replacements.

    Keys may hold several comma separated variants (``"voks mode, vox mode"``).
    """

    for original, replacement in replacements.items():
        variants = [variant.strip() for variant in original.split(",") if variant.strip()]
        for variant in variants:
            pattern = re.compile(r"(?<!\w)" + re.escape(variant) + r"(?!\w)", re.IGNORECASE)
            text = pattern.sub(lambda _match, value=replacement: value, text)
    return text


def normalise_whitespace(text: str) -> str:
    text = _WHITESPACE_RE.sub(" ", text).strip()
    return _SPACE_BEFORE_PUNCT_RE.sub(r"\1", text)


class TranscriptFilter:
    def __init__(
        self,
        remove_fillers: Optional[bool] = None,
        replacements: Optional[Dict[str, str]] = None,
        fillers: Iterable[str] = DEFAULT_FILLER_WORDS,
    ) -> None:
        settings = get_settings()
        self.remove_fillers = settings.remove_filler_words if remove_fillers is None else remove_fillers
        self.replacements = dict(settings.word_replacements if replacements is None else replacements)
        self.fillers = tuple(fillers)

    def __call__(self, text: str) -> str:
        text = strip_non_speech(text)
        if self.remove_fillers:
            text = remove_filler_words(text, self.fillers)
        text = normalise_whitespace(text)
        if self.replacements:
            text = normalise_whitespace(apply_replacements(text, self.replacements))
        return text


__all__ = [
    "DEFAULT_FILLER_WORDS",
    "TranscriptFilter",
    "apply_replacements",
    "normalise_whitespace",
    "remove_filler_words",
    "strip_non_speech",
]
