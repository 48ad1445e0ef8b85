"""Strip provider artefacts from model replies."""

from __future__ import annotations

import re

from ...data.models import OutputMode

_REASONING_RE = re.compile(
    r"<(thinking|think|reasoning)>.*?</\1>", re.IGNORECASE | re.DOTALL
)
_TRANSCRIPT_TAG_RE = re.compile(r"</?TRANSCRIPT>", re.IGNORECASE)
_FENCE_RE = re.compile(r"^```[\w+-]*\s*\n(.*?)\n?```$", re.DOTALL)
_PREAMBLE_RE = re.compile(
    r"^(?:sure[,!.]?\s*)?(?:here(?:'s| is| are)\b[^\n]*?:)\s*\n", re.IGNORECASE
)
_QUOTE_PAIRS = (('"', '"'), ("'", "'"), ("“", "”"))


def strip_reasoning(text: str) -> str:
    return _REASONING_RE.sub("", text)


def strip_enclosing_fence(text: str) -> str:
    match = _FENCE_RE.match(text.strip())
    return match.group(1) if match else text


def strip_enclosing_quotes(text: str) -> str:
    stripped = text.strip()
    for opening, closing in _QUOTE_PAIRS:
        if len(stripped) >= 2 and stripped.startswith(opening) and stripped.endswith(closing):
            inner = stripped[1:-1]
            if opening not in inner and closing not in inner:
                return inner
    return stripped


def strip_preamble(text: str) -> str:
    return _PREAMBLE_RE.sub("", text.lstrip(), count=1)


def filter_output(text: str, output_mode: OutputMode = OutputMode.PASTE) -> str:
    """Deterministic clean-up of an enhancement reply.

    Reasoning blocks and echoed transcript tags are always removed. For text
    that will be pasted or copied, enclosing code fences, a "Here is ..."
    preamble line and enclosing quotes are removed as well.
    """

    text = strip_reasoning(text)
    text = _TRANSCRIPT_TAG_RE.sub("", text)
    if OutputMode(output_mode) is not OutputMode.NONE:
        text = strip_preamble(text)
        text = strip_enclosing_fence(text)
        text = strip_enclosing_quotes(text)
    return text.strip()


__all__ = [
    "filter_output",
    "strip_enclosing_fence",
    "strip_enclosing_quotes",
    "strip_preamble",
    "strip_reasoning",
]
