"""Model-verified contradiction detection between new and recent claims."""

from __future__ import annotations

import json
import logging
import re
import time
from collections.abc import Sequence
from dataclasses import dataclass

from unit_pipeline.errors import ModelClientError
from unit_pipeline.extraction.budget import ModelTier
from unit_pipeline.knowledge.models import Claim, ClaimType, ObserverOutput
from unit_pipeline.llm.client import ModelClient
from unit_pipeline.observers.base import BaseObserver, ObserverContext, ObserverResult

logger = logging.getLogger(__name__)

COMPARABLE_TYPES = frozenset({ClaimType.BELIEF, ClaimType.INTENTION, ClaimType.FACTUAL})
MIN_CONFIDENCE = 0.4
MIN_SIMILARITY = 0.3
SAME_SUBJECT_SIMILARITY = 0.8
MAX_CANDIDATES = 5
CONTRADICTION_TYPES = ("direct", "temporal", "implication")
_OBJECT_RE = re.compile(r"\{[\s\S]*\}")


@dataclass(slots=True, frozen=True)
class Candidate:
    new_claim: Claim
    existing_claim: Claim
    similarity: float


class ContradictionObserver(BaseObserver):
    observer_type = "contradiction_observer"
    uses_llm = True
    priority = 80

    def __init__(self, client: ModelClient, *, tier: ModelTier = ModelTier.SMALL) -> None:
        self.client = client
        self.tier = tier

    async def run(self, context: ObserverContext) -> ObserverResult:
        started = time.monotonic()
        new_claims = [
            claim for claim in context.triggering_claims if claim.claim_type in COMPARABLE_TYPES
        ]
        new_ids = {claim.claim_id for claim in new_claims}
        existing = [claim for claim in context.recent_claims if claim.claim_id not in new_ids]
        candidates = find_candidates(new_claims, existing)
        if not candidates:
            return self.result([], started)

        logger.debug("Verifying %d contradiction candidates", len(candidates))
        outputs: list[ObserverOutput] = []
        for candidate, kind, explanation in await self._verify(candidates):
            outputs.append(
                self.record(
                    context,
                    "contradiction_detected",
                    {"contradiction_type": kind, "explanation": explanation},
                    [candidate.new_claim.claim_id, candidate.existing_claim.claim_id],
                ),
            )
            logger.info(
                "Detected %s contradiction between %s and %s",
                kind,
                candidate.new_claim.claim_id,
                candidate.existing_claim.claim_id,
            )
        return self.result(outputs, started)

    async def _verify(
        self,
        candidates: Sequence[Candidate],
    ) -> list[tuple[Candidate, str, str]]:
        try:
            response = await self.client.call(
                self.tier,
                build_verification_prompt(candidates),
                options={"temperature": 0.1, "max_tokens": 500},
            )
        except ModelClientError as error:
            logger.warning("Contradiction verification failed: %s", error)
            return []
        return parse_verification(response.content, candidates)


def similarity(left: Claim, right: Claim) -> float:
    """Same subject scores high; otherwise word-set Jaccard of the statements."""

    if left.subject.strip().lower() == right.subject.strip().lower():
        return SAME_SUBJECT_SIMILARITY
    words_left = set(left.statement.lower().split())
    words_right = set(right.statement.lower().split())
    union = words_left | words_right
    if not union:
        return 0.0
    return len(words_left & words_right) / len(union)


def find_candidates(new_claims: Sequence[Claim], existing: Sequence[Claim]) -> list[Candidate]:
    candidates = []
    for new_claim in new_claims:
        for old_claim in existing:
            if old_claim.claim_type is not new_claim.claim_type:
                continue
            if old_claim.confidence < MIN_CONFIDENCE:
                continue
            score = similarity(new_claim, old_claim)
            if score > MIN_SIMILARITY:
                candidates.append(Candidate(new_claim, old_claim, score))
    candidates.sort(key=lambda item: item.similarity, reverse=True)
    return candidates[:MAX_CANDIDATES]


def build_verification_prompt(candidates: Sequence[Candidate]) -> str:
    pairs = "\n\n".join(
        f"Pair {index}:\n"
        f'  A: "{item.new_claim.statement}" ({item.new_claim.claim_type.value})\n'
        f'  B: "{item.existing_claim.statement}" ({item.existing_claim.claim_type.value})'
        for index, item in enumerate(candidates, start=1)
    )
    return (
        "Analyze these claim pairs and identify any contradictions.\n\n"
        f"{pairs}\n\n"
        "For each pair that contradicts, respond with JSON:\n"
        '{"contradictions": [{"pair": 1, "type": "direct|temporal|implication", '
        '"explanation": "Brief explanation"}]}\n\n'
        'If no contradictions, respond: {"contradictions": []}'
    )


def parse_verification(
    content: str,
    candidates: Sequence[Candidate],
) -> list[tuple[Candidate, str, str]]:
    found = _OBJECT_RE.search(content)
    if not found:
        return []
    try:
        parsed = json.loads(found.group(0))
    except json.JSONDecodeError:
        logger.warning("Unparsable contradiction response: %.300s", content)
        return []
    items = parsed.get("contradictions") if isinstance(parsed, dict) else None
    if not isinstance(items, list):
        return []

    detected = []
    for item in items:
        if not isinstance(item, dict):
            continue
        pair = item.get("pair", 1)
        if isinstance(pair, bool) or not isinstance(pair, int) or not 1 <= pair <= len(candidates):
            continue
        kind = item.get("type")
        detected.append(
            (
                candidates[pair - 1],
                kind if kind in CONTRADICTION_TYPES else "direct",
                str(item.get("explanation") or ""),
            ),
        )
    return detected
