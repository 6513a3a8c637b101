"""Observer contract and shared helpers."""

from __future__ import annotations

import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

from unit_pipeline.knowledge.models import Claim, ObserverOutput
from unit_pipeline.knowledge.repository import KnowledgeRepository


@dataclass(slots=True)
class ObserverContext:
    """What an observer sees: the claims that triggered it plus recent history."""

    knowledge: KnowledgeRepository
    unit_id: str
    session_id: str
    triggering_claims: list[Claim]
    recent_claims: list[Claim]


@dataclass(slots=True)
class ObserverResult:
    observer_type: str
    outputs: list[ObserverOutput] = field(default_factory=list)
    processing_time_ms: int = 0
    error: str | None = None

    @property
    def has_output(self) -> bool:
        return bool(self.outputs)

    def to_dict(self) -> dict[str, Any]:
        return {
            "observer_type": self.observer_type,
            "output_count": len(self.outputs),
            "processing_time_ms": self.processing_time_ms,
            "error": self.error,
        }


class Observer(Protocol):
    observer_type: str
    uses_llm: bool
    priority: int

    async def run(self, context: ObserverContext) -> ObserverResult: ...


class BaseObserver:
    """Common output bookkeeping for concrete observers."""

    observer_type = "observer"
    uses_llm = False
    priority = 0

    def record(
        self,
        context: ObserverContext,
        output_type: str,
        content: dict[str, Any],
        source_claim_ids: Sequence[str],
    ) -> ObserverOutput:
        return context.knowledge.add_observer_output(
            observer_type=self.observer_type,
            output_type=output_type,
            content=content,
            source_claim_ids=source_claim_ids,
            unit_id=context.unit_id,
        )

    def result(self, outputs: list[ObserverOutput], started: float) -> ObserverResult:
        return ObserverResult(
            observer_type=self.observer_type,
            outputs=outputs,
            processing_time_ms=elapsed_ms(started),
        )


def elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
