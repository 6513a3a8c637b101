"""Observation stage: fan derived claims out to the observers, then close the unit."""

from __future__ import annotations

import logging
from typing import Any

from unit_pipeline.knowledge.models import UnitStage
from unit_pipeline.observers.base import ObserverContext
from unit_pipeline.observers.dispatcher import ObserverDispatcher
from unit_pipeline.orchestrator.handlers import TaskContext
from unit_pipeline.orchestrator.models import TaskType

logger = logging.getLogger(__name__)

RECENT_CLAIMS = 100


class ObserversHandler:
    """Run one observer group over the claims a unit produced."""

    def __init__(
        self,
        dispatcher: ObserverDispatcher,
        *,
        task_type: TaskType,
        uses_llm: bool,
        stage: UnitStage,
    ) -> None:
        self.dispatcher = dispatcher
        self.task_type = task_type
        self.uses_llm = uses_llm
        self.stage = stage

    async def execute(self, context: TaskContext) -> dict[str, Any]:
        knowledge = context.knowledge
        unit = knowledge.require_unit(context.unit_id)
        label = "LLM" if self.uses_llm else "non-LLM"

        checkpoint = context.checkpoint
        if (
            context.step_done("run_observers")
            and checkpoint is not None
            and isinstance(checkpoint.intermediate_data, dict)
        ):
            logger.info("Observers for unit %s already ran; reusing results", unit.unit_id)
            summary = checkpoint.intermediate_data
        else:
            observer_context = ObserverContext(
                knowledge=knowledge,
                unit_id=unit.unit_id,
                session_id=unit.session_id,
                triggering_claims=knowledge.list_claims_for_unit(unit.unit_id),
                recent_claims=knowledge.recent_claims(RECENT_CLAIMS),
            )
            results = await self.dispatcher.run(observer_context, uses_llm=self.uses_llm)
            summary = {
                "observers": [result.to_dict() for result in results],
                "output_count": sum(len(result.outputs) for result in results),
            }
            context.mark_step("run_observers", summary)
            logger.info(
                "%s observers done for unit %s: %d observers, %d outputs",
                label,
                unit.unit_id,
                len(results),
                summary["output_count"],
            )

        knowledge.set_unit_stage(unit.unit_id, self.stage)
        context.events.emit_observers_completed(
            unit.unit_id,
            unit.session_id,
            uses_llm=self.uses_llm,
            output_count=int(summary.get("output_count", 0)),
        )
        return summary


def nonllm_observers_handler(dispatcher: ObserverDispatcher) -> ObserversHandler:
    return ObserversHandler(
        dispatcher,
        task_type=TaskType.RUN_NONLLM_OBSERVERS,
        uses_llm=False,
        stage=UnitStage.OBSERVED,
    )


def llm_observers_handler(dispatcher: ObserverDispatcher) -> ObserversHandler:
    return ObserversHandler(
        dispatcher,
        task_type=TaskType.RUN_LLM_OBSERVERS,
        uses_llm=True,
        stage=UnitStage.OBSERVED_LLM,
    )
