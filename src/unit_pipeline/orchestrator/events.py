"""In-process typed event bus announcing pipeline stage completions."""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from unit_pipeline.storage.common import utc_now

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 100


class EventType(str, Enum):
    """Pipeline events; each carries the unit id as correlation id."""

    UNIT_CREATED = "unit:created"
    UNIT_PREPROCESSED = "unit:preprocessed"
    PRIMITIVES_EXTRACTED = "primitives:extracted"
    ENTITIES_RESOLVED = "entities:resolved"
    CLAIMS_DERIVED = "claims:derived"
    OBSERVERS_NONLLM_COMPLETED = "observers:nonllm:completed"
    OBSERVERS_LLM_COMPLETED = "observers:llm:completed"
    UNIT_COMPLETED = "unit:completed"


@dataclass(slots=True, frozen=True)
class PipelineEvent:
    type: EventType
    correlation_id: str
    payload: dict[str, Any]
    timestamp: datetime = field(default_factory=utc_now)


EventCallback = Callable[[PipelineEvent], None]


class Subscription:
    """Handle returned by :meth:`EventBus.on`; ``cancel`` stops delivery."""

    def __init__(
        self,
        bus: EventBus,
        event_type: EventType | None,
        callback: EventCallback,
    ) -> None:
        self._bus = bus
        self.event_type = event_type
        self.callback = callback
        self.active = True

    def cancel(self) -> None:
        if not self.active:
            return
        self.active = False
        self._bus._remove(self)


class EventBus:
    """Synchronous publish/subscribe without replay.

    Subscribers of a type are called in subscription order, then catch-all
    subscribers. A failing subscriber is logged and does not block the rest.
    """

    def __init__(self, *, history_limit: int = HISTORY_LIMIT) -> None:
        self._subscriptions: dict[EventType, list[Subscription]] = {}
        self._catch_all: list[Subscription] = []
        self._history: deque[PipelineEvent] = deque(maxlen=history_limit)

    def on(self, event_type: EventType, callback: EventCallback) -> Subscription:
        subscription = Subscription(self, event_type, callback)
        self._subscriptions.setdefault(event_type, []).append(subscription)
        return subscription

    def on_any(self, callback: EventCallback) -> Subscription:
        subscription = Subscription(self, None, callback)
        self._catch_all.append(subscription)
        return subscription

    def emit(
        self,
        event_type: EventType,
        unit_id: str,
        payload: dict[str, Any] | None = None,
    ) -> PipelineEvent:
        event = PipelineEvent(
            type=event_type,
            correlation_id=unit_id,
            payload={"unit_id": unit_id, **(payload or {})},
        )
        self._history.append(event)
        logger.debug("Emitting %s for %s", event_type.value, unit_id)
        targets = [*self._subscriptions.get(event_type, ()), *self._catch_all]
        for subscription in targets:
            if not subscription.active:
                continue
            try:
                subscription.callback(event)
            except Exception:
                logger.exception("Subscriber failed for %s (%s)", event_type.value, unit_id)
        return event

    def history(self, event_type: EventType | None = None) -> list[PipelineEvent]:
        if event_type is None:
            return list(self._history)
        return [event for event in self._history if event.type == event_type]

    def has_emitted(self, event_type: EventType, correlation_id: str | None = None) -> bool:
        return any(
            event.type == event_type
            and (correlation_id is None or event.correlation_id == correlation_id)
            for event in self._history
        )

    def clear(self) -> None:
        """Drop every subscription and the history."""

        for subscription in [*self._catch_all, *self._all_typed()]:
            subscription.active = False
        self._subscriptions.clear()
        self._catch_all.clear()
        self._history.clear()

    def emit_unit_created(self, unit_id: str, session_id: str) -> PipelineEvent:
        return self.emit(EventType.UNIT_CREATED, unit_id, {"session_id": session_id})

    def emit_unit_preprocessed(
        self,
        unit_id: str,
        session_id: str,
        span_ids: list[str],
    ) -> PipelineEvent:
        return self.emit(
            EventType.UNIT_PREPROCESSED,
            unit_id,
            {"session_id": session_id, "span_ids": span_ids},
        )

    def emit_primitives_extracted(  # noqa: PLR0913
        self,
        unit_id: str,
        session_id: str,
        *,
        proposition_ids: list[str],
        stance_ids: list[str],
        mention_ids: list[str],
        llm_metadata: dict[str, Any] | None = None,
    ) -> PipelineEvent:
        return self.emit(
            EventType.PRIMITIVES_EXTRACTED,
            unit_id,
            {
                "session_id": session_id,
                "proposition_ids": proposition_ids,
                "stance_ids": stance_ids,
                "mention_ids": mention_ids,
                "llm_metadata": llm_metadata or {},
            },
        )

    def emit_entities_resolved(
        self,
        unit_id: str,
        session_id: str,
        entity_ids: list[str],
    ) -> PipelineEvent:
        return self.emit(
            EventType.ENTITIES_RESOLVED,
            unit_id,
            {"session_id": session_id, "entity_ids": entity_ids},
        )

    def emit_claims_derived(
        self,
        unit_id: str,
        session_id: str,
        claim_ids: list[str],
    ) -> PipelineEvent:
        return self.emit(
            EventType.CLAIMS_DERIVED,
            unit_id,
            {"session_id": session_id, "claim_ids": claim_ids},
        )

    def emit_observers_completed(
        self,
        unit_id: str,
        session_id: str,
        *,
        uses_llm: bool,
        output_count: int,
    ) -> PipelineEvent:
        event_type = (
            EventType.OBSERVERS_LLM_COMPLETED if uses_llm else EventType.OBSERVERS_NONLLM_COMPLETED
        )
        return self.emit(
            event_type,
            unit_id,
            {"session_id": session_id, "output_count": output_count},
        )

    def emit_unit_completed(
        self,
        unit_id: str,
        session_id: str,
        summary: dict[str, int],
    ) -> PipelineEvent:
        return self.emit(
            EventType.UNIT_COMPLETED,
            unit_id,
            {"session_id": session_id, **summary},
        )

    def _all_typed(self) -> list[Subscription]:
        return [item for items in self._subscriptions.values() for item in items]

    def _remove(self, subscription: Subscription) -> None:
        if subscription.event_type is None:
            bucket = self._catch_all
        else:
            bucket = self._subscriptions.get(subscription.event_type, [])
        if subscription in bucket:
            bucket.remove(subscription)
