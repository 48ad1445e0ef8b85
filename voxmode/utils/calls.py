"""Run blocking provider calls on their own daemon thread."""

from __future__ import annotations

import concurrent.futures
import threading
from typing import Any, Callable


def call_in_thread(func: Callable[..., Any], *args: Any, name: str = "voxmode-call") -> concurrent.futures.Future:
    """Start ``func(*args)`` on a fresh daemon thread and return its future.

    Each call gets its own thread, so an abandoned call that never returns
    only holds that thread and cannot delay later calls.
    """

    future: concurrent.futures.Future = concurrent.futures.Future()

    def _run() -> None:
        if not future.set_running_or_notify_cancel():
            return
        try:
            result = func(*args)
        except Exception as exc:
            future.set_exception(exc)
        else:
            future.set_result(result)

    threading.Thread(target=_run, name=name, daemon=True).start()
    return future


__all__ = ["call_in_thread"]
