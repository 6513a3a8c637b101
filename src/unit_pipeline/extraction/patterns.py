"""Deterministic span detection over a unit's normalized text."""

from __future__ import annotations

import re
from dataclasses import dataclass

from unit_pipeline.knowledge.models import SpanMatch

_WEEKDAYS = "monday|tuesday|wednesday|thursday|friday|saturday|sunday"
_EMOTIONS = (
    "happy|sad|angry|anxious|excited|frustrated|worried|stressed|overwhelmed|"
    "grateful|hopeful|disappointed|scared|afraid|nervous|relieved|proud|lonely"
)
_RELATIONS = (
    "manager|boss|wife|husband|partner|friend|mother|father|mom|dad|sister|brother|"
    "colleague|coworker|team|client|doctor|therapist"
)


@dataclass(slots=True, frozen=True)
class SpanPattern:
    pattern_id: str
    category: str
    regex: re.Pattern[str]


def _pattern(pattern_id: str, category: str, expression: str) -> SpanPattern:
    return SpanPattern(
        pattern_id=pattern_id,
        category=category,
        regex=re.compile(expression, re.IGNORECASE),
    )


SPAN_PATTERNS: tuple[SpanPattern, ...] = (
    _pattern(
        "deadline",
        "commitment",
        rf"\bby\s+(?:tomorrow|tonight|{_WEEKDAYS}|(?:next|this)\s+\w+|(?:the\s+)?end\s+of\s+\w+)\b",
    ),
    _pattern("due_date", "commitment", r"\b(?:deadline|due\s+date|due\s+(?:on|by))\b"),
    _pattern("need_to", "commitment", r"\b(?:I|we)\s+(?:need|have|must|got)\s+to\b"),
    _pattern("promise", "commitment", r"\b(?:promised?|committed\s+to|commit\s+to)\b"),
    _pattern(
        "going_to",
        "intention",
        r"\b(?:I'm|I\s+am|we're|we\s+are)\s+going\s+to\b",
    ),
    _pattern("plan_to", "intention", r"\b(?:I|we)\s+(?:plan|intend|want)\s+to\b"),
    _pattern("will", "intention", r"\b(?:I|we)(?:'ll|\s+will)\b"),
    _pattern("decided", "intention", r"\b(?:I've|I\s+have|we've|we\s+have)\s+decided\b"),
    _pattern("emotion_word", "emotion", rf"\b(?:{_EMOTIONS})\b"),
    _pattern("feeling", "emotion", r"\b(?:I'm|I\s+am)\s+feeling\b|\bmakes?\s+me\s+feel\b"),
    _pattern("hedge", "uncertainty", r"\b(?:maybe|probably|perhaps|not\s+sure|I\s+guess)\b"),
    _pattern("belief", "belief", r"\bI\s+(?:think|believe|feel\s+(?:like|that))\b"),
    _pattern(
        "preference",
        "preference",
        r"\b(?:I\s+prefer|I'd\s+rather|would\s+rather|favou?rite)\b",
    ),
    _pattern(
        "goal",
        "goal",
        r"\b(?:my\s+goal|aim\s+to|hope\s+to|dream\s+of|want\s+to\s+become)\b",
    ),
    _pattern("relationship", "relationship", rf"\bmy\s+(?:{_RELATIONS})\b"),
    _pattern("conditional", "hypothetical", r"\b(?:if\s+I|what\s+if|unless)\b"),
)


def normalize_text(text: str) -> str:
    """Collapse whitespace runs and trim; span offsets refer to this form."""

    return " ".join(text.split())


def match_spans(
    text: str,
    patterns: tuple[SpanPattern, ...] = SPAN_PATTERNS,
) -> list[SpanMatch]:
    """Return every pattern hit ordered by position, one per (range, pattern)."""

    seen: set[tuple[int, int, str]] = set()
    matches: list[SpanMatch] = []
    for pattern in patterns:
        for hit in pattern.regex.finditer(text):
            key = (hit.start(), hit.end(), pattern.pattern_id)
            if key in seen or hit.start() == hit.end():
                continue
            seen.add(key)
            matches.append(
                SpanMatch(
                    char_start=hit.start(),
                    char_end=hit.end(),
                    text_excerpt=hit.group(0),
                    pattern_id=pattern.pattern_id,
                ),
            )
    matches.sort(key=lambda item: (item.char_start, item.char_end, item.pattern_id))
    return matches


def matched_categories(matches: list[SpanMatch]) -> set[str]:
    by_id = {pattern.pattern_id: pattern.category for pattern in SPAN_PATTERNS}
    return {by_id[match.pattern_id] for match in matches if match.pattern_id in by_id}
