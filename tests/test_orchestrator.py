from __future__ import annotations

import asyncio
import sqlite3
from datetime import timedelta
from typing import Any

import allure

from unit_pipeline.knowledge.models import UnitCreate, UnitStage
from unit_pipeline.knowledge.repository import KnowledgeRepository
from unit_pipeline.orchestrator.event_loop import (
    STALE_TASK_ERROR,
    EventLoopConfig,
    Orchestrator,
)
from unit_pipeline.orchestrator.events import EventBus, EventType
from unit_pipeline.orchestrator.handlers import TaskContext
from unit_pipeline.orchestrator.models import (
    BackoffConfig,
    TaskPriority,
    TaskStatus,
    TaskType,
)
from unit_pipeline.orchestrator.repository import TaskRepository
from unit_pipeline.storage.common import utc_now

pytestmark = [
    allure.epic("Orchestration"),
    allure.feature("Event Loop"),
]

IMMEDIATE_RETRY = BackoffConfig(base_delay_ms=0, max_delay_ms=0, jitter=False)


class ScriptedHandler:
    """Fails the first ``failures`` executions, then succeeds."""

    def __init__(self, task_type: TaskType, *, failures: int = 0) -> None:
        self.task_type = task_type
        self.failures = failures
        self.units: list[str] = []

    async def execute(self, context: TaskContext) -> dict[str, Any]:
        self.units.append(context.unit_id)
        if len(self.units) <= self.failures:
            raise RuntimeError(f"boom {len(self.units)}")
        return {"unit_id": context.unit_id}


def _orchestrator(
    tasks: TaskRepository,
    knowledge: KnowledgeRepository,
    **config: Any,
) -> Orchestrator:
    config.setdefault("backoff", IMMEDIATE_RETRY)
    return Orchestrator(
        tasks=tasks,
        knowledge=knowledge,
        events=EventBus(),
        config=EventLoopConfig(**config),
    )


def _event_types(tasks: TaskRepository, task_id: str) -> list[str]:
    details = tasks.get_task_details(task_id=task_id)
    assert details is not None
    return [event.event_type for event in details.events]


def test_create_task_if_not_exists_reuses_unfinished_task(
    task_repository: TaskRepository,
    knowledge: KnowledgeRepository,
) -> None:
    orchestrator = _orchestrator(task_repository, knowledge)
    payload = {"unit_id": "u1", "session_id": "s1"}

    first = orchestrator.create_task_if_not_exists(TaskType.PREPROCESS_UNIT, payload)
    second = orchestrator.create_task_if_not_exists(TaskType.PREPROCESS_UNIT, dict(payload))
    other_unit = orchestrator.create_task_if_not_exists(
        TaskType.PREPROCESS_UNIT,
        {"unit_id": "u2"},
    )
    other_stage = orchestrator.create_task_if_not_exists(TaskType.EXTRACT_PRIMITIVES, payload)

    assert first == second
    assert len({first, other_unit, other_stage}) == 3
    assert len(task_repository.get_all()) == 3

    task_repository.update(first, status=TaskStatus.COMPLETED)
    rerun = orchestrator.create_task_if_not_exists(TaskType.PREPROCESS_UNIT, payload)
    assert rerun != first


def test_created_task_takes_limits_from_config(
    task_repository: TaskRepository,
    knowledge: KnowledgeRepository,
) -> None:
    orchestrator = _orchestrator(task_repository, knowledge, default_max_attempts=7)

    task_id = orchestrator.create_task_if_not_exists(
        TaskType.RUN_LLM_OBSERVERS,
        {"unit_id": "u1", "session_id": "s9"},
        TaskPriority.LOW,
    )

    task = task_repository.get_by_id(task_id)
    assert task is not None
    assert task.max_attempts == 7
    assert task.backoff == IMMEDIATE_RETRY
    assert task.session_id == "s9"
    assert task.priority is TaskPriority.LOW


def test_duplicate_events_create_one_task_per_stage(
    task_repository: TaskRepository,
    knowledge: KnowledgeRepository,
) -> None:
    orchestrator = _orchestrator(task_repository, knowledge)
    orchestrator.initialize(recover=False)

    for _ in range(2):
        orchestrator.events.emit_unit_created("u1", "s1")
        orchestrator.events.emit_unit_preprocessed("u1", "s1", [])
        orchestrator.events.emit_claims_derived("u1", "s1", [])

    by_type = {task.task_type: task for task in task_repository.get_all()}
    assert len(task_repository.get_all()) == 3
    assert by_type[TaskType.PREPROCESS_UNIT].priority is TaskPriority.CRITICAL
    assert by_type[TaskType.EXTRACT_PRIMITIVES].priority is TaskPriority.HIGH
    assert by_type[TaskType.RUN_NONLLM_OBSERVERS].priority is TaskPriority.NORMAL
    assert all(task.session_id == "s1" for task in by_type.values())


def test_repeated_initialize_is_ignored(
    task_repository: TaskRepository,
    knowledge: KnowledgeRepository,
) -> None:
    orchestrator = _orchestrator(task_repository, knowledge)
    orchestrator.initialize(recover=False)
    orchestrator.initialize(recover=False)

    orchestrator.events.emit_unit_created("u1", "s1")

    assert len(task_repository.get_all()) == 1


def test_failed_attempt_is_retried_then_completed(
    task_repository: TaskRepository,
    knowledge: KnowledgeRepository,
) -> None:
    orchestrator = _orchestrator(task_repository, knowledge)
    handler = ScriptedHandler(TaskType.PREPROCESS_UNIT, failures=1)
    orchestrator.register_handler(handler)
    task_id = orchestrator.create_task_if_not_exists(TaskType.PREPROCESS_UNIT, {"unit_id": "u1"})

    asyncio.run(orchestrator.run_until_idle())

    task = task_repository.get_by_id(task_id)
    assert task is not None
    assert handler.units == ["u1", "u1"]
    assert task.status is TaskStatus.COMPLETED
    assert task.attempts == 2
    assert task.completed_at is not None
    assert task.checkpoint is None
    assert _event_types(task_repository, task_id) == [
        "created",
        "started",
        "retry_scheduled",
        "started",
        "completed",
    ]


def test_exhausted_task_fails_permanently(
    task_repository: TaskRepository,
    knowledge: KnowledgeRepository,
) -> None:
    orchestrator = _orchestrator(task_repository, knowledge, default_max_attempts=2)
    handler = ScriptedHandler(TaskType.PREPROCESS_UNIT, failures=10)
    orchestrator.register_handler(handler)
    task_id = orchestrator.create_task_if_not_exists(TaskType.PREPROCESS_UNIT, {"unit_id": "u1"})

    asyncio.run(orchestrator.run_until_idle())

    task = task_repository.get_by_id(task_id)
    assert task is not None
    assert len(handler.units) == 2
    assert task.status is TaskStatus.FAILED
    assert task.attempts >= task.max_attempts
    assert task.next_retry_at is None
    assert task.last_error == "boom 2"
    assert task_repository.get_retryable() == []
    assert orchestrator.get_status().failed_tasks == 1


def test_retry_waits_for_backoff_delay(
    task_repository: TaskRepository,
    knowledge: KnowledgeRepository,
) -> None:
    orchestrator = _orchestrator(
        task_repository,
        knowledge,
        backoff=BackoffConfig(base_delay_ms=60_000, max_delay_ms=120_000, jitter=False),
    )
    handler = ScriptedHandler(TaskType.PREPROCESS_UNIT, failures=10)
    orchestrator.register_handler(handler)
    task_id = orchestrator.create_task_if_not_exists(TaskType.PREPROCESS_UNIT, {"unit_id": "u1"})

    asyncio.run(orchestrator.run_until_idle())

    task = task_repository.get_by_id(task_id)
    assert task is not None
    assert len(handler.units) == 1
    assert task.status is TaskStatus.PENDING
    assert task.attempts == 1
    assert task.next_retry_at is not None
    assert task.last_error_at is not None
    assert task.next_retry_at == task.execute_at
    assert task.next_retry_at - task.last_error_at == timedelta(seconds=60)


def test_checkpoint_survives_failure_and_clears_on_completion(
    task_repository: TaskRepository,
    knowledge: KnowledgeRepository,
) -> None:
    seen: list[Any] = []

    class ResumableHandler:
        task_type = TaskType.EXTRACT_PRIMITIVES

        async def execute(self, context: TaskContext) -> dict[str, Any]:
            if context.step_done("fetch"):
                assert context.checkpoint is not None
                seen.append(context.checkpoint.intermediate_data)
            else:
                context.mark_step("fetch", {"answer": 42}, total_steps=2)
                raise RuntimeError("store unavailable")
            checkpoint = context.mark_step("save")
            seen.append(checkpoint.completed_steps)
            return {}

    orchestrator = _orchestrator(task_repository, knowledge)
    orchestrator.register_handler(ResumableHandler())
    task_id = orchestrator.create_task_if_not_exists(TaskType.EXTRACT_PRIMITIVES, {"unit_id": "u1"})

    asyncio.run(orchestrator.run_until_idle())

    task = task_repository.get_by_id(task_id)
    assert task is not None
    assert task.status is TaskStatus.COMPLETED
    assert task.checkpoint is None
    assert seen == [{"answer": 42}, ["fetch", "save"]]


def test_concurrency_never_exceeds_limit(
    task_repository: TaskRepository,
    knowledge: KnowledgeRepository,
) -> None:
    class SlowHandler:
        task_type = TaskType.PREPROCESS_UNIT

        def __init__(self) -> None:
            self.running = 0
            self.peak = 0

        async def execute(self, context: TaskContext) -> None:
            self.running += 1
            self.peak = max(self.peak, self.running)
            await asyncio.sleep(0.01)
            self.running -= 1

    orchestrator = _orchestrator(task_repository, knowledge, max_concurrent=2)
    handler = SlowHandler()
    orchestrator.register_handler(handler)
    for index in range(5):
        orchestrator.create_task_if_not_exists(TaskType.PREPROCESS_UNIT, {"unit_id": f"u{index}"})

    asyncio.run(orchestrator.run_until_idle())

    assert handler.peak == 2
    assert task_repository.count_by_status()[TaskStatus.COMPLETED] == 5


def test_higher_priority_work_starts_first(
    task_repository: TaskRepository,
    knowledge: KnowledgeRepository,
) -> None:
    orchestrator = _orchestrator(task_repository, knowledge, max_concurrent=1)
    handler = ScriptedHandler(TaskType.RUN_NONLLM_OBSERVERS)
    orchestrator.register_handler(handler)
    for unit_id, priority in [
        ("low", TaskPriority.LOW),
        ("normal", TaskPriority.NORMAL),
        ("critical", TaskPriority.CRITICAL),
    ]:
        orchestrator.create_task_if_not_exists(
            TaskType.RUN_NONLLM_OBSERVERS,
            {"unit_id": unit_id},
            priority,
        )

    asyncio.run(orchestrator.run_until_idle())

    assert handler.units == ["critical", "normal", "low"]


def test_tasks_without_handler_stay_pending(
    task_repository: TaskRepository,
    knowledge: KnowledgeRepository,
) -> None:
    orchestrator = _orchestrator(task_repository, knowledge)
    orchestrator.register_handler(ScriptedHandler(TaskType.PREPROCESS_UNIT))
    task_id = orchestrator.create_task_if_not_exists(TaskType.EXTRACT_PRIMITIVES, {"unit_id": "u1"})

    asyncio.run(orchestrator.run_until_idle())

    task = task_repository.get_by_id(task_id)
    assert task is not None
    assert task.status is TaskStatus.PENDING
    assert task.attempts == 0


def test_poller_picks_up_work_created_after_start(
    task_repository: TaskRepository,
    knowledge: KnowledgeRepository,
) -> None:
    orchestrator = _orchestrator(task_repository, knowledge, poll_interval_seconds=0.01)
    handler = ScriptedHandler(TaskType.PREPROCESS_UNIT)
    orchestrator.register_handler(handler)

    async def _scenario() -> None:
        orchestrator.start()
        assert orchestrator.is_running
        orchestrator.create_task_if_not_exists(TaskType.PREPROCESS_UNIT, {"unit_id": "late"})
        for _ in range(200):
            if handler.units:
                break
            await asyncio.sleep(0.01)
        await orchestrator.stop()
        await orchestrator.wait_idle()

    asyncio.run(_scenario())

    assert handler.units == ["late"]
    assert not orchestrator.is_running
    assert task_repository.count_by_status()[TaskStatus.COMPLETED] == 1


def test_recover_resets_stale_processing_tasks(
    task_repository: TaskRepository,
    knowledge: KnowledgeRepository,
) -> None:
    orchestrator = _orchestrator(task_repository, knowledge, stale_threshold_seconds=30)
    now = utc_now()
    stale_id = orchestrator.create_task_if_not_exists(TaskType.PREPROCESS_UNIT, {"unit_id": "u1"})
    task_repository.update(
        stale_id,
        status=TaskStatus.PROCESSING,
        attempts=1,
        started_at=now - timedelta(minutes=5),
    )
    fresh_id = orchestrator.create_task_if_not_exists(TaskType.PREPROCESS_UNIT, {"unit_id": "u2"})
    task_repository.update(fresh_id, status=TaskStatus.PROCESSING, attempts=1, started_at=now)

    summary = orchestrator.recover()

    stale = task_repository.get_by_id(stale_id)
    fresh = task_repository.get_by_id(fresh_id)
    assert stale is not None
    assert fresh is not None
    assert summary.stale_tasks_reset == 1
    assert stale.status is TaskStatus.PENDING
    assert stale.last_error == STALE_TASK_ERROR
    assert stale.next_retry_at is not None
    assert stale.execute_at == stale.next_retry_at
    assert _event_types(task_repository, stale_id)[-1] == "recovered"
    assert fresh.status is TaskStatus.PROCESSING
    for task in task_repository.get_by_status(TaskStatus.PROCESSING):
        assert task.started_at is not None
        assert utc_now() - task.started_at <= timedelta(seconds=30)

    assert orchestrator.recover().stale_tasks_reset == 0


def test_recovery_restarts_units_from_their_last_stage(
    task_repository: TaskRepository,
    knowledge: KnowledgeRepository,
) -> None:
    created = knowledge.create_unit(UnitCreate(text="First note.", session_id="s1"))
    extracted = knowledge.create_unit(UnitCreate(text="Second note.", session_id="s1"))
    knowledge.set_unit_stage(extracted.unit_id, UnitStage.EXTRACTED)
    observed = knowledge.create_unit(UnitCreate(text="Third note.", session_id="s1"))
    knowledge.set_unit_stage(observed.unit_id, UnitStage.OBSERVED_LLM)
    scheduled = knowledge.create_unit(UnitCreate(text="Fourth note.", session_id="s1"))
    knowledge.set_unit_stage(scheduled.unit_id, UnitStage.PREPROCESSED)
    done = knowledge.create_unit(UnitCreate(text="Fifth note.", session_id="s1"))
    knowledge.mark_unit_processed(done.unit_id)

    orchestrator = _orchestrator(task_repository, knowledge)
    existing = orchestrator.create_task_if_not_exists(
        TaskType.EXTRACT_PRIMITIVES,
        {"unit_id": scheduled.unit_id, "session_id": "s1"},
    )
    completed_units: list[str] = []
    orchestrator.events.on(
        EventType.UNIT_COMPLETED,
        lambda event: completed_units.append(event.correlation_id),
    )

    summary = orchestrator.initialize()

    assert summary.units_resumed == 2
    assert summary.units_completed == 1
    by_unit = {task.unit_id: task for task in task_repository.get_all()}
    assert by_unit[created.unit_id].task_type is TaskType.PREPROCESS_UNIT
    assert by_unit[created.unit_id].priority is TaskPriority.CRITICAL
    assert by_unit[extracted.unit_id].task_type is TaskType.RESOLVE_AND_DERIVE
    assert by_unit[scheduled.unit_id].task_id == existing
    assert observed.unit_id not in by_unit
    assert done.unit_id not in by_unit
    assert completed_units == [observed.unit_id]
    refreshed = knowledge.get_unit(observed.unit_id)
    assert refreshed is not None
    assert refreshed.processed


def test_unit_completion_is_announced_once(
    task_repository: TaskRepository,
    knowledge: KnowledgeRepository,
) -> None:
    orchestrator = _orchestrator(task_repository, knowledge)
    orchestrator.initialize(recover=False)
    unit = orchestrator.submit_unit(UnitCreate(text="All done here.", session_id="s1"))

    orchestrator.events.emit_observers_completed(
        unit.unit_id,
        "s1",
        uses_llm=True,
        output_count=0,
    )
    orchestrator.events.emit_observers_completed(
        unit.unit_id,
        "s1",
        uses_llm=True,
        output_count=0,
    )

    completed = orchestrator.events.history(EventType.UNIT_COMPLETED)
    assert [event.correlation_id for event in completed] == [unit.unit_id]
    assert completed[0].payload["claim_count"] == 0
    stored = knowledge.get_unit(unit.unit_id)
    assert stored is not None
    assert stored.processed
    assert stored.stage is UnitStage.COMPLETED


def test_status_reports_queue_counts(
    task_repository: TaskRepository,
    knowledge: KnowledgeRepository,
) -> None:
    orchestrator = _orchestrator(task_repository, knowledge)
    orchestrator.create_task_if_not_exists(TaskType.PREPROCESS_UNIT, {"unit_id": "u1"})
    orchestrator.create_task_if_not_exists(TaskType.PREPROCESS_UNIT, {"unit_id": "u2"})

    status = orchestrator.get_status()

    assert status.is_running is False
    assert status.active_tasks == 0
    assert status.pending_tasks == 2
    assert status.failed_tasks == 0


def test_malformed_task_rows_do_not_stall_the_queue(
    task_repository: TaskRepository,
    knowledge: KnowledgeRepository,
) -> None:
    orchestrator = _orchestrator(task_repository, knowledge)
    handler = ScriptedHandler(TaskType.PREPROCESS_UNIT)
    orchestrator.register_handler(handler)
    valid_id = orchestrator.create_task_if_not_exists(TaskType.PREPROCESS_UNIT, {"unit_id": "u1"})
    legacy_id = orchestrator.create_task_if_not_exists(TaskType.PREPROCESS_UNIT, {"unit_id": "u2"})
    broken_id = orchestrator.create_task_if_not_exists(TaskType.PREPROCESS_UNIT, {"unit_id": "u3"})
    with sqlite3.connect(task_repository.db_path) as connection:
        connection.execute(
            "UPDATE tasks SET task_type = 'legacy_stage' WHERE task_id = ?",
            (legacy_id,),
        )
        connection.execute(
            "UPDATE tasks SET backoff_json = '{\"base_delay_ms\": \"soon\"}' WHERE task_id = ?",
            (broken_id,),
        )

    orchestrator.initialize()
    asyncio.run(orchestrator.run_until_idle())

    valid = task_repository.get_by_id(valid_id)
    assert valid is not None
    assert valid.status is TaskStatus.COMPLETED
    assert handler.units == ["u1"]
    assert task_repository.get_by_id(legacy_id) is None
    assert task_repository.get_task_details(task_id=broken_id) is None
