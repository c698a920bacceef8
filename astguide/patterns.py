"""Heuristic design-pattern detection over declaration source text."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, List, Tuple

from .models import DetectedPattern, PatternCategory

SKILLS_ROOT = ".ast-guidance/.skills"
DOMAIN_SKILL_REF = f"{SKILLS_ROOT}/domain-patterns/SKILL.md"
GOF_SKILL_REF = f"{SKILLS_ROOT}/gof-patterns/SKILL.md"

_RING_WORDS = re.compile(r"\b(ring|ringbuffer|ring_buffer|circular|fifo|deque)\b")
_STRATEGY_ATTR = re.compile(r"self\._?(strategy|algorithm)\b")
_STRATEGY_RUN = re.compile(r"def (execute|run|apply|calculate|compute|perform)\b")
_OBSERVER_ATTACH = re.compile(r"\b(subscribe|attach|add_listener|add_observer|register)\w*\(")
_OBSERVER_NOTIFY = re.compile(r"\b(notify|emit|dispatch|publish|trigger|fire)\w*\(")
_OBSERVER_COLLECTION = re.compile(r"self\.(_?observers|_?listeners|_?subscribers|_handlers)\b")
_PRIVATE_CALL = re.compile(r"self\._\w+\(")
_RETURN_SELF = re.compile(r"return self\s*$", re.MULTILINE)
_ADAPTER_DEFS = ("def adapt", "def convert", "def transform", "def to_", "def from_")
_DECORATOR_FIELDS = ("wrapped", "component", "_inner", "wrappee")
_PROXY_FIELDS = ("_real", "_subject", "_target", "_delegate", "_proxied")
_PROXY_CONCERNS = ("cache", "lazy", "permission", "auth", "log", "throttl", "rate_limit", "check")


def _is_ring_buffer(text: str) -> bool:
    return _RING_WORDS.search(text) is not None


def _is_state_persistence(text: str) -> bool:
    return "self.state" in text or ".state =" in text or "state: state" in text


def _is_factory(text: str) -> bool:
    return "factory" in text or "def create" in text or "def make" in text


def _is_singleton(text: str) -> bool:
    return "_instance" in text or "get_instance" in text or "getinstance" in text


def _is_builder(text: str) -> bool:
    if "builder" in text and "def build(" in text:
        return True
    return len(_RETURN_SELF.findall(text)) >= 2 and "build" in text


def _is_adapter(text: str) -> bool:
    return any(marker in text for marker in _ADAPTER_DEFS)


def _is_decorator(text: str) -> bool:
    return any(
        f"self.{name} =" in text and f"self.{name}." in text for name in _DECORATOR_FIELDS
    )


def _is_proxy(text: str) -> bool:
    if not any(f"self.{name}" in text for name in _PROXY_FIELDS):
        return False
    return any(concern in text for concern in _PROXY_CONCERNS)


def _is_strategy(text: str) -> bool:
    return _STRATEGY_ATTR.search(text) is not None and _STRATEGY_RUN.search(text) is not None


def _is_observer(text: str) -> bool:
    if _OBSERVER_ATTACH.search(text) and _OBSERVER_NOTIFY.search(text):
        return True
    return _OBSERVER_COLLECTION.search(text) is not None and "notify" in text


def _is_template_method(text: str) -> bool:
    return "raise notimplementederror" in text and len(_PRIVATE_CALL.findall(text)) >= 2


@dataclass(frozen=True)
class PatternRule:
    name: str
    category: PatternCategory
    anchor: str
    matches: Callable[[str], bool]

    @property
    def ref(self) -> str:
        base = DOMAIN_SKILL_REF if self.category is PatternCategory.DOMAIN else GOF_SKILL_REF
        return f"{base}#{self.anchor}"


PATTERN_RULES: Tuple[PatternRule, ...] = (
    PatternRule("Ring Buffer", PatternCategory.DOMAIN, "ring-buffer", _is_ring_buffer),
    PatternRule("State Persistence", PatternCategory.DOMAIN, "state-persistence", _is_state_persistence),
    PatternRule("Factory", PatternCategory.GOF, "factory", _is_factory),
    PatternRule("Singleton", PatternCategory.GOF, "singleton", _is_singleton),
    PatternRule("Builder", PatternCategory.GOF, "builder", _is_builder),
    PatternRule("Adapter", PatternCategory.GOF, "adapter", _is_adapter),
    PatternRule("Decorator", PatternCategory.GOF, "decorator", _is_decorator),
    PatternRule("Proxy", PatternCategory.GOF, "proxy", _is_proxy),
    PatternRule("Strategy", PatternCategory.GOF, "strategy", _is_strategy),
    PatternRule("Observer", PatternCategory.GOF, "observer", _is_observer),
    PatternRule("Template Method", PatternCategory.GOF, "template-method", _is_template_method),
)


def detect_patterns(text: str) -> List[DetectedPattern]:
    """Return every pattern whose heuristic fires on ``text``.

    Matching is case-insensitive and purely textual; nothing is carried
    between calls.
    """
    lowered = text.lower()
    return [
        DetectedPattern(name=rule.name, category=rule.category, ref=rule.ref)
        for rule in PATTERN_RULES
        if rule.matches(lowered)
    ]


__all__ = [
    "DOMAIN_SKILL_REF",
    "GOF_SKILL_REF",
    "PATTERN_RULES",
    "PatternRule",
    "detect_patterns",
]
