"""Run registered observers for a unit and aggregate their results."""

from __future__ import annotations

import logging
import time
from collections import Counter

from unit_pipeline.observers.base import Observer, ObserverContext, ObserverResult, elapsed_ms

logger = logging.getLogger(__name__)


class ObserverDispatcher:
    """Observers run one after another, highest priority first.

    An observer that raises is logged and reported in its result; the
    remaining observers still run.
    """

    def __init__(self) -> None:
        self._observers: dict[str, Observer] = {}
        self.runs_by_type: Counter[str] = Counter()

    def register(self, observer: Observer) -> None:
        self._observers[observer.observer_type] = observer
        logger.debug("Registered observer %s", observer.observer_type)

    def unregister(self, observer_type: str) -> None:
        self._observers.pop(observer_type, None)

    def observers(self, *, uses_llm: bool | None = None) -> list[Observer]:
        selected = [
            observer
            for observer in self._observers.values()
            if uses_llm is None or observer.uses_llm == uses_llm
        ]
        return sorted(selected, key=lambda observer: observer.priority, reverse=True)

    async def run(
        self,
        context: ObserverContext,
        *,
        uses_llm: bool | None = None,
    ) -> list[ObserverResult]:
        results: list[ObserverResult] = []
        for observer in self.observers(uses_llm=uses_llm):
            started = time.monotonic()
            try:
                result = await observer.run(context)
            except Exception as error:
                logger.exception(
                    "Observer %s failed for unit %s",
                    observer.observer_type,
                    context.unit_id,
                )
                result = ObserverResult(
                    observer_type=observer.observer_type,
                    processing_time_ms=elapsed_ms(started),
                    error=str(error),
                )
            self.runs_by_type[observer.observer_type] += 1
            results.append(result)
        return results
