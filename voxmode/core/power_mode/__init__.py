"""Context driven configuration selection ("Power Mode")."""

from .cell import LatestValueCell
from .resolver import ConfigurationResolver, ContextFeed

__all__ = ["ConfigurationResolver", "ContextFeed", "LatestValueCell"]
