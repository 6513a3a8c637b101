"""Resolution stage: link entity mentions and derive claims from stored primitives."""

from __future__ import annotations

import logging
from typing import Any

from unit_pipeline.extraction.claim_deriver import derive_claim
from unit_pipeline.extraction.dedup import dedup_claims
from unit_pipeline.extraction.entity_resolver import EntityResolver
from unit_pipeline.knowledge.models import ClaimDraft, ModelTrace, PrimitiveBatch, UnitStage
from unit_pipeline.orchestrator.handlers import TaskContext
from unit_pipeline.orchestrator.models import TaskType

logger = logging.getLogger(__name__)


class ResolveAndDeriveHandler:
    """Resolve entity mentions, then derive one claim per proposition/stance pair."""

    task_type = TaskType.RESOLVE_AND_DERIVE

    async def execute(self, context: TaskContext) -> dict[str, Any]:
        knowledge = context.knowledge
        unit = knowledge.require_unit(context.unit_id)
        batch = knowledge.load_primitives(unit.unit_id)

        resolutions = EntityResolver(knowledge).resolve_all(batch.mentions)
        entity_ids: list[str] = []
        for mention in batch.mentions:
            if mention.resolved_entity_id and mention.resolved_entity_id not in entity_ids:
                entity_ids.append(mention.resolved_entity_id)
        for resolution in resolutions:
            if resolution.entity is not None and resolution.entity.entity_id not in entity_ids:
                entity_ids.append(resolution.entity.entity_id)
        context.events.emit_entities_resolved(unit.unit_id, unit.session_id, entity_ids)
        context.mark_step("resolve", total_steps=2)

        if knowledge.has_claim_sources(unit.unit_id):
            claims = knowledge.list_claims_for_unit(unit.unit_id)
            logger.info(
                "Unit %s already has %d claims; skipping derivation",
                unit.unit_id,
                len(claims),
            )
        else:
            drafts = dedup_claims(derive_drafts(batch, unit_id=unit.unit_id))
            claims = knowledge.save_claims(
                unit.unit_id,
                drafts,
                session_id=unit.session_id,
                trace=ModelTrace(extractor_id="claim_deriver", input_text=unit.raw_text),
            )
        context.mark_step("derive", total_steps=2)

        knowledge.set_unit_stage(unit.unit_id, UnitStage.DERIVED)
        context.events.emit_claims_derived(
            unit.unit_id,
            unit.session_id,
            [claim.claim_id for claim in claims],
        )
        return {
            "entity_count": len(entity_ids),
            "created_entities": sum(1 for item in resolutions if item.created),
            "unresolved_mentions": sum(1 for item in resolutions if item.entity is None),
            "claim_count": len(claims),
        }


def derive_drafts(batch: PrimitiveBatch, *, unit_id: str) -> list[ClaimDraft]:
    stances = {stance.proposition_id: stance for stance in batch.stances}
    drafts = []
    for proposition in batch.propositions:
        stance = stances.get(proposition.proposition_id)
        if stance is None:
            logger.warning(
                "Proposition %s of unit %s has no stance; no claim derived",
                proposition.proposition_id,
                unit_id,
            )
            continue
        drafts.append(derive_claim(proposition, stance))
    return drafts
