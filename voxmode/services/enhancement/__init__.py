"""AI enhancement of transcripts."""

from .base import EnhancementProvider, EnhancementRequest
from .pipeline import ENHANCEMENT_PROVIDERS, EnhancementPipeline
from .prompts import PromptLibrary, PromptTemplate

__all__ = [
    "ENHANCEMENT_PROVIDERS",
    "EnhancementPipeline",
    "EnhancementProvider",
    "EnhancementRequest",
    "PromptLibrary",
    "PromptTemplate",
]
