from __future__ import annotations

from datetime import timedelta

import allure
import pytest

from unit_pipeline.orchestrator.models import (
    Checkpoint,
    TaskCreate,
    TaskPriority,
    TaskStatus,
    TaskType,
    TaskView,
)
from unit_pipeline.orchestrator.repository import TaskRepository, parse_checkpoint
from unit_pipeline.storage.common import utc_now

pytestmark = [
    allure.epic("Orchestration"),
    allure.feature("Task Store"),
]


def _create(
    repository: TaskRepository,
    unit_id: str = "unit-1",
    *,
    task_type: TaskType = TaskType.PREPROCESS_UNIT,
    priority: TaskPriority = TaskPriority.NORMAL,
    **kwargs,
) -> TaskView:
    return repository.create(
        TaskCreate(
            task_type=task_type,
            payload={"unit_id": unit_id, "session_id": "s1"},
            priority=priority,
            **kwargs,
        ),
    )


def test_create_stores_pending_task_with_audit_event(task_repository: TaskRepository) -> None:
    task = _create(task_repository, priority=TaskPriority.HIGH, session_id="s1")

    assert task.status is TaskStatus.PENDING
    assert task.attempts == 0
    assert task.priority_value == 75
    assert task.unit_id == "unit-1"
    assert task.session_id == "s1"
    assert task.checkpoint is None

    details = task_repository.get_task_details(task_id=task.task_id)
    assert details is not None
    assert [event.event_type for event in details.events] == ["created"]
    assert details.events[0].status_to is TaskStatus.PENDING


def test_update_records_status_transition(task_repository: TaskRepository) -> None:
    task = _create(task_repository)

    updated = task_repository.update(
        task.task_id,
        status=TaskStatus.PROCESSING,
        attempts=1,
        started_at=utc_now(),
        event_type="started",
        details={"attempt": 1},
    )

    assert updated is not None
    assert updated.status is TaskStatus.PROCESSING
    assert updated.attempts == 1
    assert updated.started_at is not None
    details = task_repository.get_task_details(task_id=task.task_id)
    assert details is not None
    started = details.events[-1]
    assert started.event_type == "started"
    assert started.status_from is TaskStatus.PENDING
    assert started.status_to is TaskStatus.PROCESSING
    assert started.details == {"attempt": 1}


def test_update_rejects_unknown_fields_and_missing_tasks(task_repository: TaskRepository) -> None:
    task = _create(task_repository)

    with pytest.raises(ValueError, match="Unsupported task fields: task_type"):
        task_repository.update(task.task_id, task_type=TaskType.RUN_LLM_OBSERVERS)
    assert task_repository.update("missing", status=TaskStatus.COMPLETED) is None


def test_get_pending_orders_by_priority_then_age(task_repository: TaskRepository) -> None:
    low = _create(task_repository, "u1", priority=TaskPriority.LOW)
    critical = _create(task_repository, "u2", priority=TaskPriority.CRITICAL)
    normal = _create(task_repository, "u3", priority=TaskPriority.NORMAL)
    newer_normal = _create(task_repository, "u4", priority=TaskPriority.NORMAL)

    pending = task_repository.get_pending()

    assert [task.task_id for task in pending] == [
        critical.task_id,
        normal.task_id,
        newer_normal.task_id,
        low.task_id,
    ]


def test_get_pending_skips_tasks_scheduled_in_the_future(task_repository: TaskRepository) -> None:
    later = utc_now() + timedelta(hours=1)
    task = _create(task_repository, execute_at=later)

    assert task_repository.get_pending() == []
    due = task_repository.get_pending(now=later + timedelta(seconds=1))
    assert [item.task_id for item in due] == [task.task_id]


def test_get_retryable_requires_attempts_left_and_elapsed_backoff(
    task_repository: TaskRepository,
) -> None:
    now = utc_now()
    retryable = _create(task_repository, "u1", max_attempts=3)
    task_repository.update(
        retryable.task_id,
        status=TaskStatus.FAILED,
        attempts=1,
        next_retry_at=now - timedelta(seconds=5),
    )
    waiting = _create(task_repository, "u2", max_attempts=3)
    task_repository.update(
        waiting.task_id,
        status=TaskStatus.FAILED,
        attempts=1,
        next_retry_at=now + timedelta(minutes=5),
    )
    exhausted = _create(task_repository, "u3", max_attempts=2)
    task_repository.update(exhausted.task_id, status=TaskStatus.FAILED, attempts=2)

    assert [task.task_id for task in task_repository.get_retryable(now=now)] == [
        retryable.task_id,
    ]


def test_get_unfinished_by_type_ignores_completed_tasks(task_repository: TaskRepository) -> None:
    done = _create(task_repository, "u1")
    task_repository.update(done.task_id, status=TaskStatus.COMPLETED)
    failed = _create(task_repository, "u2")
    task_repository.update(failed.task_id, status=TaskStatus.FAILED, attempts=5)
    pending = _create(task_repository, "u3")
    _create(task_repository, "u4", task_type=TaskType.EXTRACT_PRIMITIVES)

    unfinished = task_repository.get_unfinished_by_type(TaskType.PREPROCESS_UNIT)

    assert [task.task_id for task in unfinished] == [failed.task_id, pending.task_id]


def test_checkpoint_is_persisted_and_cleared(task_repository: TaskRepository) -> None:
    task = _create(task_repository)
    checkpoint = Checkpoint(
        step="extract",
        step_index=1,
        total_steps=3,
        intermediate_data={"propositions": []},
        completed_steps=["load_context", "extract"],
    )

    stored = task_repository.update(task.task_id, checkpoint=checkpoint)
    assert stored is not None
    assert stored.checkpoint == checkpoint

    cleared = task_repository.update(task.task_id, checkpoint=None)
    assert cleared is not None
    assert cleared.checkpoint is None


def test_malformed_checkpoint_reads_as_missing() -> None:
    assert parse_checkpoint("not json") is None
    assert parse_checkpoint('{"step_index": 2}') is None
    assert parse_checkpoint(None) is None


def test_count_by_status_reports_every_status(task_repository: TaskRepository) -> None:
    first = _create(task_repository, "u1")
    _create(task_repository, "u2")
    task_repository.update(first.task_id, status=TaskStatus.COMPLETED)

    counts = task_repository.count_by_status()

    assert counts == {
        TaskStatus.PENDING: 1,
        TaskStatus.PROCESSING: 0,
        TaskStatus.COMPLETED: 1,
        TaskStatus.FAILED: 0,
    }


def test_prune_terminal_keeps_live_tasks(task_repository: TaskRepository) -> None:
    completed = _create(task_repository, "u1")
    task_repository.update(completed.task_id, status=TaskStatus.COMPLETED)
    live = _create(task_repository, "u2")

    deleted = task_repository.prune_terminal(older_than=utc_now() + timedelta(seconds=1))

    assert deleted == 1
    assert task_repository.get_by_id(completed.task_id) is None
    assert task_repository.get_by_id(live.task_id) is not None


def test_listeners_see_every_mutation_until_unsubscribed(task_repository: TaskRepository) -> None:
    seen: list[tuple[str, TaskStatus]] = []
    unsubscribe = task_repository.subscribe(lambda view: seen.append((view.task_id, view.status)))

    task = _create(task_repository)
    task_repository.update(task.task_id, status=TaskStatus.PROCESSING)
    unsubscribe()
    task_repository.update(task.task_id, status=TaskStatus.COMPLETED)

    assert seen == [(task.task_id, TaskStatus.PENDING), (task.task_id, TaskStatus.PROCESSING)]


def test_failing_listener_does_not_break_writes(task_repository: TaskRepository) -> None:
    def _explode(_: TaskView) -> None:
        raise RuntimeError("listener down")

    task_repository.subscribe(_explode)

    task = _create(task_repository)

    assert task_repository.get_by_id(task.task_id) is not None
