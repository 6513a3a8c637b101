"""Standard handler set wiring the extraction stages and observers together."""

from __future__ import annotations

from unit_pipeline.extraction.budget import ModelTier
from unit_pipeline.extraction.primitive_extractor import PrimitiveExtractor
from unit_pipeline.llm.client import ModelClient
from unit_pipeline.observers.concern import ConcernObserver
from unit_pipeline.observers.contradiction import ContradictionObserver
from unit_pipeline.observers.dispatcher import ObserverDispatcher
from unit_pipeline.observers.goal import GoalObserver
from unit_pipeline.orchestrator.handlers import TaskHandler
from unit_pipeline.pipeline.extract import ExtractPrimitivesHandler
from unit_pipeline.pipeline.observe import llm_observers_handler, nonllm_observers_handler
from unit_pipeline.pipeline.preprocess import PreprocessHandler
from unit_pipeline.pipeline.resolve import ResolveAndDeriveHandler


def build_dispatcher(
    client: ModelClient,
    *,
    observer_tier: ModelTier = ModelTier.SMALL,
) -> ObserverDispatcher:
    dispatcher = ObserverDispatcher()
    dispatcher.register(ConcernObserver())
    dispatcher.register(GoalObserver())
    dispatcher.register(ContradictionObserver(client, tier=observer_tier))
    return dispatcher


def build_default_handlers(
    client: ModelClient,
    *,
    extraction_tier: ModelTier = ModelTier.MEDIUM,
    observer_tier: ModelTier = ModelTier.SMALL,
) -> list[TaskHandler]:
    """One handler per task type, sharing a single model client."""

    dispatcher = build_dispatcher(client, observer_tier=observer_tier)
    return [
        PreprocessHandler(),
        ExtractPrimitivesHandler(PrimitiveExtractor(client, tier=extraction_tier)),
        ResolveAndDeriveHandler(),
        nonllm_observers_handler(dispatcher),
        llm_observers_handler(dispatcher),
    ]
