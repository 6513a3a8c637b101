from __future__ import annotations

import logging
import time

from unit_pipeline.knowledge.models import Claim, ClaimType, ObserverOutput
from unit_pipeline.observers.base import BaseObserver, ObserverContext, ObserverResult

logger = logging.getLogger(__name__)

NEGATIVE_VALENCE = -0.3
STRONG_INTENSITY = 0.5


class ConcernObserver(BaseObserver):
    """Track worries: a concern about a known subject continues, otherwise it is new."""

    observer_type = "concern_observer"
    uses_llm = False
    priority = 4

    async def run(self, context: ObserverContext) -> ObserverResult:
        started = time.monotonic()
        claims = [claim for claim in context.triggering_claims if is_concern(claim)]
        if not claims:
            return self.result([], started)

        known = _known_concerns(context)
        outputs: list[ObserverOutput] = []
        for claim in claims:
            subject_key = claim.subject.strip().lower()
            existing = known.get(subject_key)
            if existing is not None:
                outputs.append(
                    self.record(
                        context,
                        "concern_continued",
                        {
                            "existing_output_id": existing.output_id,
                            "claim_id": claim.claim_id,
                            "subject": claim.subject,
                            "intensity": claim.emotional_intensity,
                        },
                        [claim.claim_id, *existing.source_claim_ids],
                    ),
                )
                continue
            output = self.record(
                context,
                "concern_new",
                {
                    "claim_id": claim.claim_id,
                    "subject": claim.subject,
                    "statement": claim.statement,
                    "intensity": claim.emotional_intensity,
                    "stakes": claim.stakes.value,
                },
                [claim.claim_id],
            )
            known[subject_key] = output
            outputs.append(output)

        logger.info(
            "Concern observation for unit %s: %d outputs",
            context.unit_id,
            len(outputs),
        )
        return self.result(outputs, started)


def is_concern(claim: Claim) -> bool:
    if claim.claim_type is ClaimType.CONCERN:
        return True
    return (
        claim.emotional_valence < NEGATIVE_VALENCE
        and claim.emotional_intensity > STRONG_INTENSITY
    )


def _known_concerns(context: ObserverContext) -> dict[str, ObserverOutput]:
    previous = context.knowledge.list_observer_outputs(observer_type=ConcernObserver.observer_type)
    known: dict[str, ObserverOutput] = {}
    # Oldest first so the earliest output for a subject wins.
    for output in reversed(previous):
        if output.output_type != "concern_new":
            continue
        subject = str(output.content.get("subject") or "").strip().lower()
        if subject:
            known.setdefault(subject, output)
    return known
