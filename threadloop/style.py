"""
House style rules for generated posts.

The rule set is data: an ordered list of ``(text) -> text`` transforms runs
first, then an ordered list of ``(text) -> list[Violation]`` checks. Both
lists are assembled from the ``style`` section of config.yaml by
:func:`build_transforms` and :func:`build_checks`.

Transforms:
    1. **Connector strip**: removes stilted transition phrases
       ("Furthermore,", "In conclusion,") that read like an essay.
    2. **Emoji lead**: prepends 1-2 emoji from a small palette, unless the
       model already used emoji.

Checks:
    - max length (platform limit, or the reply limit)
    - zero hashtags (the platform down-ranks tagged text posts)
    - corporate-tone, promotional-tone and jargon blocklists
    - paragraph ceiling (walls of paragraphs read like an article)
    - stealth accounts only: "sounds like a business" blocklist plus the
      persona's own list
    - replies only: no URLs
"""

import random
import re
from dataclasses import dataclass, field
from typing import Callable

_EMOJI_RE = re.compile(
    "[\U0001F300-\U0001FAFF\U00002600-\U000027BF\U0001F000-\U0001F2FF]"
)
_URL_RE = re.compile(r"https?://\S+")
_SENTENCE_START_RE = re.compile(r"(^|[.!?]\s+|\n\s*)([a-z])")

DEFAULT_MAX_LENGTH = 500
DEFAULT_MAX_PARAGRAPHS = 3
DEFAULT_TAG_MARKER = "#"

DEFAULT_CONNECTORS = [
    "Furthermore, ",
    "Moreover, ",
    "Additionally, ",
    "In addition, ",
    "In conclusion, ",
    "That being said, ",
    "It is worth noting that ",
    "Needless to say, ",
]
DEFAULT_EMOJI_PALETTE = ["🏠", "💡", "😅", "🤔", "👀", "🔨", "😂", "✨"]


@dataclass
class Violation:
    rule: str
    detail: str

    def __str__(self) -> str:
        return f"{self.rule}: {self.detail}"


Transform = Callable[[str], str]
Check = Callable[[str], list[Violation]]


@dataclass
class StyleRules:
    """Blocklists and limits, normally loaded from config.yaml."""
    max_length: int = DEFAULT_MAX_LENGTH
    reply_max_length: int = 150
    max_paragraphs: int = DEFAULT_MAX_PARAGRAPHS
    tag_marker: str = DEFAULT_TAG_MARKER
    corporate_blocklist: list[str] = field(default_factory=list)
    promo_blocklist: list[str] = field(default_factory=list)
    jargon_blocklist: list[str] = field(default_factory=list)
    stealth_blocklist: list[str] = field(default_factory=list)
    connectors: list[str] = field(default_factory=lambda: list(DEFAULT_CONNECTORS))
    emoji_palette: list[str] = field(default_factory=lambda: list(DEFAULT_EMOJI_PALETTE))

    @classmethod
    def from_config(cls, config: dict) -> "StyleRules":
        cfg = config.get("style", {}) or {}
        rules = cls()
        for name in (
            "max_length", "reply_max_length", "max_paragraphs", "tag_marker",
            "corporate_blocklist", "promo_blocklist", "jargon_blocklist",
            "stealth_blocklist", "connectors", "emoji_palette",
        ):
            if cfg.get(name) is not None:
                setattr(rules, name, cfg[name])
        return rules


def has_emoji(text: str) -> bool:
    return bool(_EMOJI_RE.search(text))


# ── Transforms ───────────────────────────────────────────────────────

def strip_connectors(connectors: list[str]) -> Transform:
    patterns = [re.compile(re.escape(c.strip()) + r"\s*", re.IGNORECASE) for c in connectors]

    def _strip(text: str) -> str:
        for pattern in patterns:
            text = pattern.sub("", text)
        text = re.sub(r"[ \t]{2,}", " ", text)
        return _SENTENCE_START_RE.sub(lambda m: m.group(1) + m.group(2).upper(), text)

    return _strip


def prepend_emoji(palette: list[str], rng: random.Random | None = None) -> Transform:
    rng = rng or random.Random()

    def _prepend(text: str) -> str:
        if not palette or has_emoji(text):
            return text
        count = min(rng.choice([1, 2]), len(palette))
        return "".join(rng.sample(palette, count)) + " " + text

    return _prepend


# ── Checks ───────────────────────────────────────────────────────────

def max_length_check(limit: int) -> Check:
    def _check(text: str) -> list[Violation]:
        if len(text) > limit:
            return [Violation("length", f"{len(text)}/{limit} characters")]
        return []
    return _check


def tag_marker_check(marker: str) -> Check:
    def _check(text: str) -> list[Violation]:
        count = text.count(marker)
        if count:
            return [Violation("hashtag", f"{count} '{marker}' found, none allowed")]
        return []
    return _check


def blocklist_check(name: str, words: list[str]) -> Check:
    """Report the first blocklisted word found (case-insensitive)."""
    lowered = [(w, w.lower()) for w in words if w]

    def _check(text: str) -> list[Violation]:
        haystack = text.lower()
        for word, needle in lowered:
            if needle in haystack:
                return [Violation(name, f'"{word}"')]
        return []
    return _check


def paragraph_check(ceiling: int) -> Check:
    def _check(text: str) -> list[Violation]:
        paragraphs = [p for p in re.split(r"\n\s*\n", text) if p.strip()]
        if len(paragraphs) > ceiling:
            return [Violation("paragraphs", f"{len(paragraphs)} paragraphs, max {ceiling}")]
        return []
    return _check


def url_check() -> Check:
    def _check(text: str) -> list[Violation]:
        if _URL_RE.search(text):
            return [Violation("url", "links are not allowed here")]
        return []
    return _check


# ── Pipeline ─────────────────────────────────────────────────────────

def build_transforms(rules: StyleRules, rng: random.Random | None = None) -> list[Transform]:
    return [
        strip_connectors(rules.connectors),
        prepend_emoji(rules.emoji_palette, rng),
    ]


def build_checks(
    rules: StyleRules,
    max_length: int | None = None,
    stealth: bool = False,
    extra_blocklist: list[str] | None = None,
    allow_urls: bool = True,
) -> list[Check]:
    checks = [
        max_length_check(max_length or rules.max_length),
        tag_marker_check(rules.tag_marker),
        blocklist_check("corporate tone", rules.corporate_blocklist),
        blocklist_check("promotional tone", rules.promo_blocklist),
        blocklist_check("jargon", rules.jargon_blocklist),
        paragraph_check(rules.max_paragraphs),
    ]
    if stealth:
        checks.append(blocklist_check(
            "sounds like a business",
            list(rules.stealth_blocklist) + list(extra_blocklist or []),
        ))
    if not allow_urls:
        checks.append(url_check())
    return checks


def apply_transforms(text: str, transforms: list[Transform]) -> str:
    for transform in transforms:
        text = transform(text)
    return text.strip()


def run_checks(text: str, checks: list[Check]) -> list[Violation]:
    violations = []
    for check in checks:
        violations.extend(check(text))
    return violations


def truncate_to_limit(text: str, limit: int) -> str:
    """Truncate text to fit within a character limit, breaking at sentence boundaries.

    Prefers cutting at a sentence end so the post reads as complete rather
    than trailing off. Falls back to word boundary + ellipsis only when no
    sentence break fits.
    """
    if len(text) <= limit:
        return text
    candidate = text[:limit]
    for delim in [". ", ".\n", "! ", "!\n", "? ", "?\n"]:
        idx = candidate.rfind(delim)
        if idx > limit // 3:
            return text[: idx + 1]
    truncated = text[:limit - 1]
    last_space = truncated.rfind(" ")
    if last_space > limit // 2:
        truncated = truncated[:last_space]
    return truncated + "…"
