"""AI enhancement provider abstractions."""

from __future__ import annotations

import abc
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class EnhancementRequest:
    system: str
    user: str
    transcript: str
    model: Optional[str] = None


class EnhancementProvider(abc.ABC):
    """Send one rendered prompt to a language model and return its reply."""

    provider_id: str = "base"
    default_model: str = ""

    @abc.abstractmethod
    def complete(self, request: EnhancementRequest, deadline: float) -> str:
        raise NotImplementedError


__all__ = ["EnhancementProvider", "EnhancementRequest"]
