"""Preprocessing stage: match pattern spans in a newly ingested unit."""

from __future__ import annotations

import logging
from typing import Any

from unit_pipeline.extraction.patterns import match_spans, matched_categories
from unit_pipeline.knowledge.models import UnitStage
from unit_pipeline.orchestrator.handlers import TaskContext
from unit_pipeline.orchestrator.models import TaskType

logger = logging.getLogger(__name__)


class PreprocessHandler:
    """Detect pattern spans in a new unit; existing spans are reused on retry."""

    task_type = TaskType.PREPROCESS_UNIT

    async def execute(self, context: TaskContext) -> dict[str, Any]:
        knowledge = context.knowledge
        unit = knowledge.require_unit(context.unit_id)

        matches = match_spans(unit.sanitized_text)
        spans = knowledge.list_spans(unit.unit_id)
        if spans:
            logger.info("Reusing %d stored spans for unit %s", len(spans), unit.unit_id)
        else:
            spans = knowledge.add_spans(unit.unit_id, matches)

        knowledge.set_unit_stage(unit.unit_id, UnitStage.PREPROCESSED)
        context.events.emit_unit_preprocessed(
            unit.unit_id,
            unit.session_id,
            [span.span_id for span in spans],
        )
        return {
            "span_count": len(spans),
            "categories": sorted(matched_categories(matches)),
        }
