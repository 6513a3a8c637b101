"""Extraction stage: turn a unit into stored propositions, stances, relations and mentions."""

from __future__ import annotations

import logging
import time
from typing import Any

from unit_pipeline.extraction.budget import TIER_BUDGETS, build_budgeted_context
from unit_pipeline.extraction.primitive_extractor import (
    ExtractionMetadata,
    PrimitiveExtractor,
    convert_output,
)
from unit_pipeline.knowledge.models import ModelTrace, PrimitiveBatch, UnitStage
from unit_pipeline.orchestrator.handlers import TaskContext
from unit_pipeline.orchestrator.models import TaskType
from unit_pipeline.storage.common import dump_json

logger = logging.getLogger(__name__)

EXTRACTOR_ID = "primitive_extractor"
CONTEXT_ENTITIES = 20
CONTEXT_PROPOSITIONS = 10
EXTRACT_STEPS = 3


class ExtractPrimitivesHandler:
    """One model call per unit producing propositions, stances, relations and mentions.

    A unit that already has stored propositions is not sent to the model again;
    the stored primitives are re-announced instead. When a previous attempt got
    a model answer but failed to store it, the answer is taken from the
    checkpoint.
    """

    task_type = TaskType.EXTRACT_PRIMITIVES

    def __init__(self, extractor: PrimitiveExtractor) -> None:
        self.extractor = extractor

    async def execute(self, context: TaskContext) -> dict[str, Any]:
        started = time.monotonic()
        knowledge = context.knowledge
        unit = knowledge.require_unit(context.unit_id)

        if knowledge.has_propositions(unit.unit_id):
            batch = knowledge.load_primitives(unit.unit_id)
            logger.info("Unit %s already extracted; skipping model call", unit.unit_id)
            self._announce(context, unit.session_id, batch, {"skipped": True})
            return _summary(batch, ExtractionMetadata(), started, skipped=True)

        checkpoint = context.checkpoint
        spans = knowledge.list_spans(unit.unit_id)
        if not context.step_done("load_context"):
            context.mark_step("load_context", total_steps=EXTRACT_STEPS)
        claims = knowledge.recent_claims(TIER_BUDGETS[self.extractor.tier].max_claims)
        budgeted = build_budgeted_context(
            unit_text=unit.sanitized_text,
            tier=self.extractor.tier,
            preceding_summary=" ".join(claim.statement for claim in reversed(claims)),
            claims=claims,
            entities=knowledge.recent_entities(CONTEXT_ENTITIES),
            propositions=knowledge.recent_propositions(CONTEXT_PROPOSITIONS),
        )

        if (
            checkpoint is not None
            and "extract" in checkpoint.completed_steps
            and isinstance(checkpoint.intermediate_data, dict)
        ):
            logger.info("Resuming unit %s from checkpointed model output", unit.unit_id)
            result = convert_output(checkpoint.intermediate_data, spans)
            result.raw = checkpoint.intermediate_data
            result.response_text = dump_json(result.raw)
        else:
            result = await self.extractor.extract(unit, spans, budgeted)
            context.mark_step("extract", result.raw, total_steps=EXTRACT_STEPS)

        batch = knowledge.save_primitives(
            unit.unit_id,
            propositions=result.propositions,
            relations=result.relations,
            mentions=result.mentions,
            trace=ModelTrace(
                extractor_id=EXTRACTOR_ID,
                input_text=unit.raw_text,
                prompt=result.prompt,
                response=result.response_text,
                model=result.metadata.model,
                tokens_used=result.metadata.tokens_used.total,
                processing_time_ms=result.metadata.processing_time_ms,
                error=result.metadata.error,
            ),
        )
        context.mark_step("save", total_steps=EXTRACT_STEPS)
        self._announce(context, unit.session_id, batch, result.metadata.to_dict())
        return _summary(batch, result.metadata, started)

    def _announce(
        self,
        context: TaskContext,
        session_id: str,
        batch: PrimitiveBatch,
        llm_metadata: dict[str, Any],
    ) -> None:
        context.knowledge.set_unit_stage(context.unit_id, UnitStage.EXTRACTED)
        context.events.emit_primitives_extracted(
            context.unit_id,
            session_id,
            proposition_ids=[item.proposition_id for item in batch.propositions],
            stance_ids=[item.stance_id for item in batch.stances],
            mention_ids=[item.mention_id for item in batch.mentions],
            llm_metadata=llm_metadata,
        )


def _summary(
    batch: PrimitiveBatch,
    metadata: ExtractionMetadata,
    started: float,
    *,
    skipped: bool = False,
) -> dict[str, Any]:
    return {
        "proposition_count": len(batch.propositions),
        "stance_count": len(batch.stances),
        "relation_count": len(batch.relations),
        "mention_count": len(batch.mentions),
        "tokens_used": metadata.tokens_used.total,
        "processing_time_ms": int((time.monotonic() - started) * 1000),
        "skipped": skipped,
    }

