from __future__ import annotations

import allure

from unit_pipeline.orchestrator.events import EventBus, EventType, PipelineEvent

pytestmark = [
    allure.epic("Orchestration"),
    allure.feature("Event Bus"),
]


def test_typed_subscribers_run_in_order_before_catch_all() -> None:
    bus = EventBus()
    calls: list[str] = []
    bus.on_any(lambda event: calls.append(f"any:{event.type.value}"))
    bus.on(EventType.UNIT_CREATED, lambda event: calls.append("first"))
    bus.on(EventType.UNIT_CREATED, lambda event: calls.append("second"))
    bus.on(EventType.UNIT_COMPLETED, lambda event: calls.append("other"))

    event = bus.emit_unit_created("unit-1", "s1")

    assert calls == ["first", "second", "any:unit:created"]
    assert event.correlation_id == "unit-1"
    assert event.payload == {"unit_id": "unit-1", "session_id": "s1"}


def test_failing_subscriber_does_not_block_others() -> None:
    bus = EventBus()
    received: list[PipelineEvent] = []

    def _broken(_: PipelineEvent) -> None:
        raise RuntimeError("subscriber down")

    bus.on(EventType.CLAIMS_DERIVED, _broken)
    bus.on(EventType.CLAIMS_DERIVED, received.append)

    bus.emit_claims_derived("unit-1", "s1", ["c1", "c2"])

    assert len(received) == 1
    assert received[0].payload["claim_ids"] == ["c1", "c2"]


def test_cancelled_subscription_stops_delivery() -> None:
    bus = EventBus()
    received: list[PipelineEvent] = []
    subscription = bus.on(EventType.UNIT_PREPROCESSED, received.append)

    bus.emit_unit_preprocessed("unit-1", "s1", ["span-1"])
    subscription.cancel()
    subscription.cancel()
    bus.emit_unit_preprocessed("unit-2", "s1", [])

    assert [event.correlation_id for event in received] == ["unit-1"]


def test_events_are_not_replayed_to_late_subscribers() -> None:
    bus = EventBus()
    bus.emit_unit_created("unit-1", "s1")
    received: list[PipelineEvent] = []

    bus.on(EventType.UNIT_CREATED, received.append)

    assert received == []
    assert bus.has_emitted(EventType.UNIT_CREATED, "unit-1")
    assert not bus.has_emitted(EventType.UNIT_CREATED, "unit-2")


def test_history_keeps_only_latest_events() -> None:
    bus = EventBus(history_limit=3)

    for index in range(5):
        bus.emit_unit_created(f"unit-{index}", "s1")

    assert [event.correlation_id for event in bus.history()] == ["unit-2", "unit-3", "unit-4"]
    assert bus.history(EventType.UNIT_COMPLETED) == []


def test_observer_completion_event_type_follows_llm_flag() -> None:
    bus = EventBus()

    nonllm = bus.emit_observers_completed("unit-1", "s1", uses_llm=False, output_count=2)
    llm = bus.emit_observers_completed("unit-1", "s1", uses_llm=True, output_count=0)

    assert nonllm.type is EventType.OBSERVERS_NONLLM_COMPLETED
    assert nonllm.payload["output_count"] == 2
    assert llm.type is EventType.OBSERVERS_LLM_COMPLETED


def test_clear_drops_subscriptions_and_history() -> None:
    bus = EventBus()
    received: list[PipelineEvent] = []
    bus.on(EventType.UNIT_CREATED, received.append)
    bus.emit_unit_created("unit-1", "s1")

    bus.clear()
    bus.emit_unit_created("unit-2", "s1")

    assert len(received) == 1
    assert [event.correlation_id for event in bus.history()] == ["unit-2"]
