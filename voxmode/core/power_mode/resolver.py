"""Resolve the effective configuration from the focused application and URL."""

from __future__ import annotations

import queue
import threading
from typing import Callable, List, Optional

from ...data.models import ContextObservation, EffectiveConfiguration
from ...data.rules import RuleStore
from ...errors import ConfigurationError
from ...logging import get_logger
from .cell import LatestValueCell
from .matching import best_rule

LOGGER = get_logger(__name__)

_CLOSED = object()


class ContextFeed:
    """Push channel carrying context observations from the focus monitor."""

    def __init__(self, maxsize: int = 0) -> None:
        self._queue: queue.Queue = queue.Queue(maxsize=maxsize)

    def push(self, observation: ContextObservation) -> None:
        self._queue.put(observation)

    def close(self) -> None:
        self._queue.put(_CLOSED)

    def get(self, timeout: Optional[float] = None):
        """Return the next observation, ``None`` on timeout, or the close marker."""

        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None


class ConfigurationResolver:
    """Maps context observations to an :class:`EffectiveConfiguration`.

    The latest result lives in a :class:`LatestValueCell`; ``current`` never
    waits for a recomputation in progress.
    """

    def __init__(self, store: RuleStore) -> None:
        self.store = store
        self._cell: LatestValueCell[EffectiveConfiguration] = LatestValueCell(store.default_configuration())
        self._observation: Optional[ContextObservation] = None
        self._update_lock = threading.Lock()
        self._listeners: List[Callable[[EffectiveConfiguration, Optional[ContextObservation]], None]] = []
        self._feed: Optional[ContextFeed] = None
        self._consumer: Optional[threading.Thread] = None

    @property
    def current(self) -> EffectiveConfiguration:
        return self._cell.get()

    @property
    def version(self) -> int:
        return self._cell.version

    @property
    def observation(self) -> Optional[ContextObservation]:
        return self._observation

    def resolve(self, observation: ContextObservation) -> EffectiveConfiguration:
        """Return the configuration for ``observation`` without publishing it."""

        rule = best_rule(self.store.rules(), observation)
        if rule is None:
            return self.store.default_configuration()
        return rule.configuration

    def update(self, observation: ContextObservation) -> EffectiveConfiguration:
        """Resolve ``observation`` and publish the result as the current configuration."""

        with self._update_lock:
            latest = self._observation
            if latest is not None and observation.observed_at < latest.observed_at:
                LOGGER.debug("Ignoring stale context observation for %s", observation.application)
                return self.current
            try:
                configuration = self.resolve(observation)
            except ConfigurationError:
                LOGGER.exception("Failed to resolve configuration for %s; keeping previous", observation.application)
                configuration = self.current
            self._observation = observation
            previous = self._cell.get()
            self._cell.set(configuration)

        if previous != configuration:
            LOGGER.info(
                "Power Mode: %s%s -> %s (%s/%s)",
                observation.application,
                f" [{observation.url}]" if observation.url else "",
                configuration.name,
                configuration.backend,
                configuration.model or "-",
            )
        self._notify(configuration, observation)
        return configuration

    def refresh(self) -> EffectiveConfiguration:
        """Recompute with the retained observation, e.g. after the rules changed."""

        observation = self._observation
        if observation is None:
            configuration = self.store.default_configuration()
            self._cell.set(configuration)
            self._notify(configuration, None)
            return configuration
        with self._update_lock:
            self._observation = None
        return self.update(observation)

    def subscribe(self, listener: Callable[[EffectiveConfiguration, Optional[ContextObservation]], None]) -> None:
        self._listeners.append(listener)

    def attach(self, feed: ContextFeed) -> None:
        """Consume ``feed`` on a background thread until :meth:`detach`."""

        if self._consumer is not None:
            raise RuntimeError("Resolver is already attached to a context feed")
        self._feed = feed
        self._consumer = threading.Thread(
            target=self._consume, args=(feed,), name="voxmode-context", daemon=True
        )
        self._consumer.start()

    def detach(self, timeout: float = 1.0) -> None:
        feed, consumer = self._feed, self._consumer
        if feed is None or consumer is None:
            return
        feed.close()
        consumer.join(timeout=timeout)
        self._feed = None
        self._consumer = None

    def _consume(self, feed: ContextFeed) -> None:
        while True:
            item = feed.get()
            if item is _CLOSED:
                return
            if item is None:
                continue
            try:
                self.update(item)
            except Exception:
                LOGGER.exception("Context update failed")

    def _notify(self, configuration: EffectiveConfiguration, observation: Optional[ContextObservation]) -> None:
        for listener in list(self._listeners):
            try:
                listener(configuration, observation)
            except Exception:
                LOGGER.exception("Configuration listener raised an exception")


__all__ = ["ConfigurationResolver", "ContextFeed"]
