"""Token budgeting for extraction prompts."""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum

from unit_pipeline.extraction.dedup import dedup_entities
from unit_pipeline.knowledge.models import Claim, Entity, Proposition

PRECEDING_CONTEXT_SHARE = 0.4
WORDS_PER_TOKEN = 0.75
MAX_CONTEXT_ENTITIES = 10


class ModelTier(str, Enum):
    """Abstract model capability class resolved to a concrete model elsewhere."""

    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"


@dataclass(slots=True, frozen=True)
class TokenBudget:
    context_tokens: int
    response_tokens: int
    max_claims: int


TIER_BUDGETS: dict[ModelTier, TokenBudget] = {
    ModelTier.SMALL: TokenBudget(context_tokens=4_000, response_tokens=1_000, max_claims=10),
    ModelTier.MEDIUM: TokenBudget(context_tokens=8_000, response_tokens=2_000, max_claims=20),
    ModelTier.LARGE: TokenBudget(context_tokens=16_000, response_tokens=4_000, max_claims=40),
}


@dataclass(slots=True)
class BudgetedContext:
    """Bounded slice of recent knowledge that accompanies one extraction call."""

    preceding_summary: str = ""
    claims: list[Claim] = field(default_factory=list)
    entities: list[Entity] = field(default_factory=list)
    propositions: list[Proposition] = field(default_factory=list)
    unit_tokens: int = 0
    available_tokens: int = 0


def estimate_tokens(text: str) -> int:
    """Average of a character based and a word based token estimate."""

    if not text:
        return 0
    by_chars = math.ceil(len(text) / 4)
    by_words = math.ceil(len(text.split()) * 1.3)
    return math.ceil((by_chars + by_words) / 2)


def truncate_to_tokens(text: str, max_tokens: int) -> str:
    if max_tokens <= 0:
        return ""
    if estimate_tokens(text) <= max_tokens:
        return text
    max_words = int(max_tokens * WORDS_PER_TOKEN)
    words = text.split()
    if len(words) <= max_words:
        return text
    return " ".join(words[:max_words]) + "..."


def build_budgeted_context(  # noqa: PLR0913
    *,
    unit_text: str,
    tier: ModelTier,
    preceding_summary: str = "",
    claims: Sequence[Claim] = (),
    entities: Sequence[Entity] = (),
    propositions: Sequence[Proposition] = (),
) -> BudgetedContext:
    """Fit recent context into what the tier leaves after the unit itself."""

    budget = TIER_BUDGETS[tier]
    unit_tokens = estimate_tokens(unit_text)
    available = max(0, budget.context_tokens - unit_tokens)
    summary_budget = int(available * PRECEDING_CONTEXT_SHARE)
    return BudgetedContext(
        preceding_summary=truncate_to_tokens(preceding_summary, summary_budget),
        claims=list(claims[: budget.max_claims]),
        entities=dedup_entities(entities)[:MAX_CONTEXT_ENTITIES],
        propositions=list(propositions),
        unit_tokens=unit_tokens,
        available_tokens=available,
    )
