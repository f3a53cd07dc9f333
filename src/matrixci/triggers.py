# triggers.py
from __future__ import annotations

from fnmatch import fnmatchcase
from typing import Iterable, List

from .model import Event, EventKind, TriggerRule


def _matches_any(branch: str, patterns: Iterable[str]) -> bool:
    return any(fnmatchcase(branch, p) for p in patterns)


def rule_matches(rule: TriggerRule, event: Event) -> bool:
    """An empty branch filter matches every branch."""
    if EventKind(rule.event) is not EventKind(event.kind):
        return False
    if not rule.branches:
        return True
    return _matches_any(event.branch, rule.branches)


def is_triggered(rules: List[TriggerRule], event: Event) -> bool:
    """True when at least one rule matches the event."""
    return any(rule_matches(r, event) for r in rules)
