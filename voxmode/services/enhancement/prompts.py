"""Prompt templates referenced by Power Mode configurations."""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from pydantic import BaseModel, ConfigDict, TypeAdapter, ValidationError

from ...errors import ConfigurationError, EnhancementError
from .base import EnhancementRequest

BASE_INSTRUCTIONS = (
    "You are a transcription enhancer. The user message contains a speech-to-text "
    "transcript inside <TRANSCRIPT> tags. Rewrite it according to the rules below. "
    "Reply with the rewritten text only, without commentary, tags or quotes."
)


class PromptTemplate(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str
    title: str
    instructions: str

    def render(self, text: str, model: Optional[str] = None) -> EnhancementRequest:
        system = f"{BASE_INSTRUCTIONS}\n\n{self.instructions.strip()}"
        user = f"<TRANSCRIPT>\n{text}\n</TRANSCRIPT>"
        return EnhancementRequest(system=system, user=user, transcript=text, model=model)


BUILTIN_PROMPTS = (
    PromptTemplate(
        id="default",
        title="Clean up",
        instructions=(
            "- Fix grammar, punctuation and capitalisation.\n"
            "- Remove filler words, false starts and repetitions.\n"
            "- Keep the speaker's wording and meaning; do not add information."
        ),
    ),
    PromptTemplate(
        id="email",
        title="Email",
        instructions=(
            "- Format the transcript as a concise, polite email body.\n"
            "- Use short paragraphs; include a greeting and sign-off only if dictated."
        ),
    ),
    PromptTemplate(
        id="chat",
        title="Chat",
        instructions=(
            "- Make the transcript read like a casual chat message.\n"
            "- Keep it short; no greeting or sign-off."
        ),
    ),
    PromptTemplate(
        id="code",
        title="Code comment",
        instructions=(
            "- The speaker is a programmer. Keep identifiers, file names and technical terms exact.\n"
            "- Use backticks for code identifiers when they are clearly code."
        ),
    ),
)

_PROMPT_LIST = TypeAdapter(List[PromptTemplate])


class PromptLibrary:
    def __init__(self, prompts: Iterable[PromptTemplate] = BUILTIN_PROMPTS) -> None:
        self._lock = threading.Lock()
        self._prompts: Dict[str, PromptTemplate] = {prompt.id: prompt for prompt in prompts}

    @classmethod
    def from_file(cls, path: Path, include_builtin: bool = True) -> "PromptLibrary":
        try:
            custom = _PROMPT_LIST.validate_json(Path(path).read_text(encoding="utf-8"))
        except (OSError, ValidationError) as exc:
            raise ConfigurationError(f"Failed to load prompts from {path}: {exc}") from exc
        library = cls(BUILTIN_PROMPTS if include_builtin else ())
        for prompt in custom:
            library.register(prompt)
        return library

    def register(self, prompt: PromptTemplate) -> None:
        with self._lock:
            self._prompts[prompt.id] = prompt

    def get(self, prompt_ref: str) -> PromptTemplate:
        with self._lock:
            prompt = self._prompts.get(prompt_ref)
        if prompt is None:
            raise EnhancementError(f"Unknown prompt: {prompt_ref!r}")
        return prompt

    def ids(self) -> List[str]:
        with self._lock:
            return sorted(self._prompts)


__all__ = ["BUILTIN_PROMPTS", "PromptLibrary", "PromptTemplate"]
