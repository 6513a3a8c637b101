from __future__ import annotations

import logging
import time

from unit_pipeline.extraction.dedup import claim_key
from unit_pipeline.knowledge.models import ClaimType, ObserverOutput
from unit_pipeline.observers.base import BaseObserver, ObserverContext, ObserverResult

logger = logging.getLogger(__name__)

GOAL_CLAIM_TYPES = frozenset({ClaimType.GOAL, ClaimType.INTENTION, ClaimType.COMMITMENT})


class GoalObserver(BaseObserver):
    """Record goals, intentions and commitments as they are stated."""

    observer_type = "goal_observer"
    uses_llm = False
    priority = 5

    async def run(self, context: ObserverContext) -> ObserverResult:
        started = time.monotonic()
        claims = [
            claim for claim in context.triggering_claims if claim.claim_type in GOAL_CLAIM_TYPES
        ]
        if not claims:
            return self.result([], started)

        seen = {
            claim_key(str(output.content.get("statement") or ""))
            for output in context.knowledge.list_observer_outputs(
                observer_type=self.observer_type,
            )
        }
        outputs: list[ObserverOutput] = []
        for claim in claims:
            key = claim_key(claim.statement)
            output_type = "goal_reaffirmed" if key in seen else "goal_detected"
            seen.add(key)
            outputs.append(
                self.record(
                    context,
                    output_type,
                    {
                        "claim_id": claim.claim_id,
                        "claim_type": claim.claim_type.value,
                        "statement": claim.statement,
                        "subject": claim.subject,
                        "stakes": claim.stakes.value,
                    },
                    [claim.claim_id],
                ),
            )
        logger.info("Goal observation for unit %s: %d outputs", context.unit_id, len(outputs))
        return self.result(outputs, started)
