"""Single-slot, last-write-wins value holder."""

from __future__ import annotations

import threading
from typing import Generic, Optional, Tuple, TypeVar

T = TypeVar("T")


class LatestValueCell(Generic[T]):
    """Hold the most recent value published by one writer for many readers.

    Values are expected to be immutable; a write is a reference swap, so a
    reader always sees either the previous or the new value in full. Each write
    bumps ``version`` so readers can tell whether anything changed.
    """

    def __init__(self, initial: Optional[T] = None) -> None:
        self._lock = threading.Lock()
        self._value = initial
        self._version = 0 if initial is None else 1

    def get(self) -> Optional[T]:
        with self._lock:
            return self._value

    def snapshot(self) -> Tuple[Optional[T], int]:
        with self._lock:
            return self._value, self._version

    def set(self, value: T) -> int:
        with self._lock:
            self._value = value
            self._version += 1
            return self._version

    @property
    def version(self) -> int:
        with self._lock:
            return self._version


__all__ = ["LatestValueCell"]
