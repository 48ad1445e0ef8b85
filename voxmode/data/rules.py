"""Storage for Power Mode rules and the default configuration."""

from __future__ import annotations

import json
import threading
import time
from pathlib import Path
from typing import Iterable, List, Optional, Protocol, runtime_checkable

from pydantic import BaseModel, Field, ValidationError

from ..config import get_settings
from ..errors import ConfigurationError
from ..logging import get_logger
from .models import ConfigRule, EffectiveConfiguration

LOGGER = get_logger(__name__)


@runtime_checkable
class RuleStore(Protocol):
    """Read-only query surface consumed by the configuration resolver."""

    def rules(self) -> List[ConfigRule]:
        ...

    def default_configuration(self) -> EffectiveConfiguration:
        ...


class RuleDocument(BaseModel):
    default: Optional[EffectiveConfiguration] = None
    rules: List[ConfigRule] = Field(default_factory=list)


def default_configuration_from_settings() -> EffectiveConfiguration:
    settings = get_settings()
    return EffectiveConfiguration(
        name="default",
        backend=settings.default_backend,
        model=settings.default_model,
    )


def validate_rule(rule: ConfigRule) -> ConfigRule:
    """Normalise blank patterns and reject rules that can never match."""

    application = (rule.application or "").strip() or None
    url = (rule.url or "").strip() or None
    if application is None and url is None:
        raise ConfigurationError(f"Rule {rule.id!r} must match an application, a URL, or both")
    if not rule.configuration.backend.strip():
        raise ConfigurationError(f"Rule {rule.id!r} has no transcription backend")
    if application != rule.application or url != rule.url:
        rule = rule.model_copy(update={"application": application, "url": url})
    return rule


def _validate_all(rules: Iterable[ConfigRule]) -> List[ConfigRule]:
    validated: List[ConfigRule] = []
    seen = set()
    for rule in rules:
        if rule.id in seen:
            raise ConfigurationError(f"Duplicate rule id {rule.id!r}")
        seen.add(rule.id)
        validated.append(validate_rule(rule))
    return validated


class InMemoryRuleStore:
    def __init__(
        self,
        rules: Iterable[ConfigRule] = (),
        default: Optional[EffectiveConfiguration] = None,
    ) -> None:
        self._lock = threading.Lock()
        self._rules = _validate_all(rules)
        self._default = default

    def rules(self) -> List[ConfigRule]:
        with self._lock:
            return list(self._rules)

    def default_configuration(self) -> EffectiveConfiguration:
        return self._default or default_configuration_from_settings()

    def set_default(self, configuration: EffectiveConfiguration) -> None:
        self._default = configuration

    def upsert(self, rule: ConfigRule) -> ConfigRule:
        rule = validate_rule(rule.model_copy(update={"modified_at": time.time()}))
        with self._lock:
            self._rules = [existing for existing in self._rules if existing.id != rule.id]
            self._rules.append(rule)
        return rule

    def remove(self, rule_id: str) -> bool:
        with self._lock:
            before = len(self._rules)
            self._rules = [rule for rule in self._rules if rule.id != rule_id]
            return len(self._rules) != before


class JsonRuleStore(InMemoryRuleStore):
    """Rules persisted as a JSON document, reloaded when the file changes."""

    def __init__(self, path: Optional[Path] = None) -> None:
        super().__init__()
        self.path = Path(path or get_settings().rules_path)
        self._mtime: Optional[float] = None
        self.reload()

    def reload(self) -> None:
        if not self.path.exists():
            LOGGER.debug("No Power Mode rules at %s", self.path)
            with self._lock:
                self._rules = []
            self._default = None
            self._mtime = None
            return
        try:
            document = RuleDocument.model_validate_json(self.path.read_text(encoding="utf-8"))
        except ValidationError as exc:
            raise ConfigurationError(f"Malformed rules file {self.path}: {exc}") from exc
        rules = _validate_all(document.rules)
        with self._lock:
            self._rules = rules
        self._default = document.default
        self._mtime = self.path.stat().st_mtime
        LOGGER.info("Loaded %d Power Mode rule(s) from %s", len(rules), self.path)

    def _reload_if_changed(self) -> None:
        try:
            mtime = self.path.stat().st_mtime
        except FileNotFoundError:
            mtime = None
        if mtime != self._mtime:
            self.reload()

    def rules(self) -> List[ConfigRule]:
        self._reload_if_changed()
        return super().rules()

    def default_configuration(self) -> EffectiveConfiguration:
        self._reload_if_changed()
        return super().default_configuration()

    def upsert(self, rule: ConfigRule) -> ConfigRule:
        rule = super().upsert(rule)
        self.save()
        return rule

    def remove(self, rule_id: str) -> bool:
        removed = super().remove(rule_id)
        if removed:
            self.save()
        return removed

    def save(self) -> None:
        document = RuleDocument(default=self._default, rules=super().rules())
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = json.loads(document.model_dump_json(exclude_none=True))
        self.path.write_text(json.dumps(payload, indent=2) + "\n", encoding="utf-8")
        self._mtime = self.path.stat().st_mtime


__all__ = [
    "InMemoryRuleStore",
    "JsonRuleStore",
    "RuleDocument",
    "RuleStore",
    "default_configuration_from_settings",
    "validate_rule",
]
