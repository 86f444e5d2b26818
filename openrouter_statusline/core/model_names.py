"""
Model display names.

Rewrites raw OpenRouter model slugs into short human-readable labels.
"""

import re
from dataclasses import dataclass
from typing import Pattern, Sequence, Tuple


@dataclass(frozen=True)
class PrettyNameRule:
    """A single rewrite rule: the first rule whose pattern matches wins."""
    pattern: Pattern[str]
    template: str

    @classmethod
    def compile(cls, pattern: str, template: str) -> "PrettyNameRule":
        """Build a case-insensitive rule from a raw regex string."""
        return cls(pattern=re.compile(pattern, re.IGNORECASE), template=template)

    def apply(self, name: str) -> str:
        return self.pattern.sub(self.template, name, count=1)


DEFAULT_PRETTY_NAMES: Tuple[PrettyNameRule, ...] = (
    PrettyNameRule.compile(r"^claude-([0-9.]+)-sonnet$", r"Sonnet \1"),
    PrettyNameRule.compile(r"^claude-([0-9.]+)-opus$", r"Opus \1"),
    PrettyNameRule.compile(r"^claude-([0-9.]+)-haiku$", r"Haiku \1"),
    PrettyNameRule.compile(r"^gpt-4o$", "GPT-4o"),
    PrettyNameRule.compile(r"^gpt-4o-mini$", "GPT-4o mini"),
    PrettyNameRule.compile(r"^gpt-4-turbo$", "GPT-4 Turbo"),
    PrettyNameRule.compile(r"^gpt-3\.5-turbo$", "GPT-3.5 Turbo"),
    PrettyNameRule.compile(r"^gemini-([0-9.]+)-pro$", r"Gemini \1 Pro"),
    PrettyNameRule.compile(r"^gemini-([0-9.]+)-flash$", r"Gemini \1 Flash"),
)

_PROVIDER_PREFIX = re.compile(r"^[^/]+/")
_DATE_SUFFIX = re.compile(r"-\d{8}$")


def short_model_name(model: str) -> str:
    """Strip the ``provider/`` prefix and a trailing ``-YYYYMMDD`` date."""
    return _DATE_SUFFIX.sub("", _PROVIDER_PREFIX.sub("", model))


def prettify_model_name(
    model: str,
    rules: Sequence[PrettyNameRule] = DEFAULT_PRETTY_NAMES,
    enabled: bool = True
) -> str:
    """Return a display label for a model slug.

    Args:
        model: Raw model slug, e.g. ``anthropic/claude-4.5-sonnet-20250929``
        rules: Ordered rewrite rules, evaluated first-match-wins
        enabled: When False only the short name is returned

    Returns:
        The rewritten label, or the short name when no rule matches
    """
    short_name = short_model_name(model)
    if not enabled:
        return short_name

    for rule in rules:
        if rule.pattern.search(short_name):
            return rule.apply(short_name)

    return short_name
