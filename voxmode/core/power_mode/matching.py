"""Rule matching and ranking for Power Mode."""

from __future__ import annotations

from enum import IntEnum
from fnmatch import fnmatchcase
from typing import Iterable, List, NamedTuple, Optional
from urllib.parse import urlsplit

from ...data.models import ConfigRule, ContextObservation

_GLOB_CHARS = set("*?[")


class AppMatch(IntEnum):
    ANY = 0
    PATTERN = 1
    EXACT = 2


class RankKey(NamedTuple):
    url_specific: int
    app_match: int
    priority: int
    modified_at: float
    rule_id: str


def _is_glob(pattern: str) -> bool:
    return any(char in _GLOB_CHARS for char in pattern)


def _strip_scheme(value: str) -> str:
    if "://" in value:
        return value.split("://", 1)[1]
    return value


def _host(url: str) -> str:
    candidate = url if "://" in url else f"//{url}"
    try:
        return (urlsplit(candidate).hostname or "").casefold()
    except ValueError:
        return ""


def match_application(pattern: Optional[str], application: str) -> Optional[AppMatch]:
    """Return how ``pattern`` matches the application, or ``None`` if it does not."""

    if pattern is None:
        return AppMatch.ANY
    folded_pattern = pattern.strip().casefold()
    folded_app = application.strip().casefold()
    if folded_pattern == folded_app:
        return AppMatch.EXACT
    if _is_glob(folded_pattern) and fnmatchcase(folded_app, folded_pattern):
        return AppMatch.PATTERN
    return None


def match_url(pattern: Optional[str], url: Optional[str]) -> bool:
    """``True`` when the URL pattern matches.

    Glob patterns are matched against the whole URL. Plain patterns match the
    host (including subdomains) or a scheme-less URL prefix, so ``github.com``
    matches ``https://gist.github.com/x`` and ``github.com/org`` matches
    ``https://github.com/org/repo``.
    """

    if pattern is None or not url:
        return False
    folded_pattern = pattern.strip().casefold()
    folded_url = url.strip().casefold()
    if _is_glob(folded_pattern):
        return fnmatchcase(folded_url, folded_pattern)

    bare_pattern = _strip_scheme(folded_pattern).rstrip("/")
    host = _host(folded_url)
    if host and (host == bare_pattern or host.endswith(f".{bare_pattern}")):
        return True
    bare_url = _strip_scheme(folded_url)
    if bare_url.startswith("www."):
        bare_url = bare_url[4:]
    return bare_url.startswith(bare_pattern)


def rank_key(rule: ConfigRule, observation: ContextObservation) -> Optional[RankKey]:
    """Return the sort key for a matching rule, ``None`` when it does not match."""

    if not rule.enabled:
        return None
    app_match = match_application(rule.application, observation.application)
    if app_match is None:
        return None
    url_specific = 0
    if rule.url is not None:
        if not match_url(rule.url, observation.url):
            return None
        url_specific = 1
    return RankKey(url_specific, int(app_match), rule.priority, rule.modified_at, rule.id)


def rank_rules(rules: Iterable[ConfigRule], observation: ContextObservation) -> List[ConfigRule]:
    """Matching rules, best first.

    Order: URL match, then application exactness, then explicit priority, then
    most recently modified, then rule id.
    """

    keyed = []
    for rule in rules:
        key = rank_key(rule, observation)
        if key is not None:
            keyed.append((key, rule))
    keyed.sort(key=lambda item: item[0], reverse=True)
    return [rule for _key, rule in keyed]


def best_rule(rules: Iterable[ConfigRule], observation: ContextObservation) -> Optional[ConfigRule]:
    ranked = rank_rules(rules, observation)
    return ranked[0] if ranked else None


__all__ = [
    "AppMatch",
    "RankKey",
    "best_rule",
    "match_application",
    "match_url",
    "rank_key",
    "rank_rules",
]
