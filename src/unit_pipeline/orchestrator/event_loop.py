"""Asyncio orchestrator: event wiring, bounded-concurrency execution, retries and recovery."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import random
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any

from unit_pipeline.errors import PipelineError
from unit_pipeline.knowledge.models import ConversationUnit, UnitCreate, UnitStage
from unit_pipeline.knowledge.repository import KnowledgeRepository
from unit_pipeline.orchestrator.events import (
    EventBus,
    EventCallback,
    EventType,
    PipelineEvent,
    Subscription,
)
from unit_pipeline.orchestrator.handlers import (
    CheckpointWriter,
    HandlerRegistry,
    TaskContext,
    TaskHandler,
)
from unit_pipeline.orchestrator.models import (
    BackoffConfig,
    Checkpoint,
    TaskCreate,
    TaskPriority,
    TaskStatus,
    TaskType,
    TaskView,
    compute_backoff_seconds,
)
from unit_pipeline.orchestrator.repository import TaskRepository
from unit_pipeline.storage.common import utc_now

logger = logging.getLogger(__name__)

STALE_TASK_ERROR = "Task stale - recovered after process restart"

# Event -> the task it schedules for the same unit.
WIRING: tuple[tuple[EventType, TaskType, TaskPriority], ...] = (
    (EventType.UNIT_CREATED, TaskType.PREPROCESS_UNIT, TaskPriority.CRITICAL),
    (EventType.UNIT_PREPROCESSED, TaskType.EXTRACT_PRIMITIVES, TaskPriority.HIGH),
    (EventType.PRIMITIVES_EXTRACTED, TaskType.RESOLVE_AND_DERIVE, TaskPriority.HIGH),
    (EventType.CLAIMS_DERIVED, TaskType.RUN_NONLLM_OBSERVERS, TaskPriority.NORMAL),
    (EventType.OBSERVERS_NONLLM_COMPLETED, TaskType.RUN_LLM_OBSERVERS, TaskPriority.NORMAL),
)
TASK_PRIORITIES = {task_type: priority for _, task_type, priority in WIRING}

# Stage a unit last finished -> task that continues it; None means only completion is left.
RESUME_FROM_STAGE: dict[UnitStage, TaskType | None] = {
    UnitStage.CREATED: TaskType.PREPROCESS_UNIT,
    UnitStage.PREPROCESSED: TaskType.EXTRACT_PRIMITIVES,
    UnitStage.EXTRACTED: TaskType.RESOLVE_AND_DERIVE,
    UnitStage.DERIVED: TaskType.RUN_NONLLM_OBSERVERS,
    UnitStage.OBSERVED: TaskType.RUN_LLM_OBSERVERS,
    UnitStage.OBSERVED_LLM: None,
    UnitStage.COMPLETED: None,
}


@dataclass(slots=True)
class EventLoopConfig:
    max_concurrent: int = 3
    poll_interval_seconds: float = 1.0
    stale_threshold_seconds: float = 30.0
    auto_start: bool = False
    default_max_attempts: int = 3
    backoff: BackoffConfig = field(default_factory=BackoffConfig)


@dataclass(slots=True)
class OrchestratorStatus:
    is_running: bool
    active_tasks: int
    pending_tasks: int
    failed_tasks: int


@dataclass(slots=True)
class RecoverySummary:
    """What one recovery pass changed."""

    stale_tasks_reset: int = 0
    units_resumed: int = 0
    units_completed: int = 0


class Orchestrator:
    """Runs pipeline tasks from the store, at most ``max_concurrent`` at a time.

    All store access happens on the event loop thread between suspension
    points, so the check-then-create in ``create_task_if_not_exists`` cannot
    interleave with another scheduling decision.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        tasks: TaskRepository,
        knowledge: KnowledgeRepository,
        events: EventBus,
        config: EventLoopConfig | None = None,
        registry: HandlerRegistry | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.tasks = tasks
        self.knowledge = knowledge
        self.events = events
        self.config = config or EventLoopConfig()
        self.registry = registry or HandlerRegistry()
        self._rng = rng or random.Random()  # noqa: S311
        self._active: dict[str, asyncio.Task[None]] = {}
        self._subscriptions: list[Subscription] = []
        self._poller: asyncio.Task[None] | None = None
        self._running = False
        self._draining = False
        self._drain_scheduled = False
        self._initialized = False
        self._recovered = False

    @property
    def is_running(self) -> bool:
        return self._running

    def register_handler(self, handler: TaskHandler) -> None:
        self.registry.register(handler)

    def initialize(self, *, recover: bool = True) -> RecoverySummary:
        """Wire events to task creation, recover interrupted work, optionally start.

        ``recover=False`` only wires events, for short-lived producers that
        must not touch work owned by a running orchestrator.
        """

        if self._initialized:
            logger.warning("Orchestrator already initialized; ignoring repeated call")
            return RecoverySummary()
        self._initialized = True
        for event_type, task_type, priority in WIRING:
            self._subscriptions.append(
                self.events.on(event_type, self._schedule_on(task_type, priority)),
            )
        self._subscriptions.append(
            self.events.on(EventType.OBSERVERS_LLM_COMPLETED, self._on_llm_observers_completed),
        )
        summary = self.recover() if recover else RecoverySummary()
        if self.config.auto_start:
            self.start()
        return summary

    def submit_unit(self, payload: UnitCreate) -> ConversationUnit:
        """Store a new unit and announce it, which schedules preprocessing."""

        unit = self.knowledge.create_unit(payload)
        self.events.emit_unit_created(unit.unit_id, unit.session_id)
        return unit

    def start(self) -> None:
        """Begin polling and drain eligible work; needs a running event loop."""

        if self._running:
            return
        loop = asyncio.get_running_loop()
        self._running = True
        self._poller = loop.create_task(self._poll_loop(), name="unit-pipeline-poller")
        logger.info(
            "Orchestrator started (max_concurrent=%d, poll_interval=%.2fs)",
            self.config.max_concurrent,
            self.config.poll_interval_seconds,
        )
        self.process_queue()

    async def stop(self) -> None:
        """Stop polling; tasks already executing run to completion."""

        if not self._running:
            return
        self._running = False
        poller, self._poller = self._poller, None
        if poller is not None:
            poller.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await poller
        logger.info("Orchestrator stopped with %d tasks in flight", len(self._active))

    async def wait_idle(self) -> None:
        """Wait until nothing is executing."""

        while self._active:
            await asyncio.gather(*list(self._active.values()), return_exceptions=True)

    async def run_until_idle(self) -> None:
        """Execute eligible tasks, and the tasks they cause, until none is due."""

        self._draining = True
        try:
            while True:
                self.process_queue()
                if not self._active:
                    return
                await self.wait_idle()
        finally:
            self._draining = False

    def get_status(self) -> OrchestratorStatus:
        counts = self.tasks.count_by_status()
        return OrchestratorStatus(
            is_running=self._running,
            active_tasks=len(self._active),
            pending_tasks=counts[TaskStatus.PENDING],
            failed_tasks=counts[TaskStatus.FAILED],
        )

    def create_task_if_not_exists(
        self,
        task_type: TaskType,
        payload: dict[str, Any],
        priority: TaskPriority = TaskPriority.NORMAL,
    ) -> str:
        """Return the unfinished task of this type for the payload's unit, or create one."""

        unit_id = payload.get("unit_id")
        if not unit_id:
            logger.warning("Creating %s task without unit_id; skipping dedup", task_type.value)
            return self._create_task(task_type, payload, priority).task_id

        for task in self.tasks.get_unfinished_by_type(task_type):
            if task.unit_id == str(unit_id):
                logger.debug(
                    "Reusing %s task %s for unit %s (%s)",
                    task_type.value,
                    task.task_id,
                    unit_id,
                    task.status.value,
                )
                return task.task_id
        return self._create_task(task_type, payload, priority).task_id

    def recover(self) -> RecoverySummary:
        """Reset stale executions and restart units that have no work scheduled.

        Runs once per orchestrator instance.
        """

        summary = RecoverySummary()
        if self._recovered:
            return summary
        self._recovered = True

        now = utc_now()
        threshold = timedelta(seconds=self.config.stale_threshold_seconds)
        for task in self.tasks.get_by_status(TaskStatus.PROCESSING):
            if task.started_at is not None and now - task.started_at <= threshold:
                continue
            retry_at = now + timedelta(
                seconds=compute_backoff_seconds(task.attempts, task.backoff, rng=self._rng),
            )
            self.tasks.update(
                task.task_id,
                status=TaskStatus.PENDING,
                next_retry_at=retry_at,
                execute_at=retry_at,
                last_error=STALE_TASK_ERROR,
                last_error_at=now,
                event_type="recovered",
                details={
                    "started_at": task.started_at.isoformat() if task.started_at else None,
                },
            )
            summary.stale_tasks_reset += 1
            logger.warning("Recovered stale task %s (%s)", task.task_id, task.task_type.value)

        scheduled = {
            task.unit_id
            for status in (TaskStatus.PENDING, TaskStatus.PROCESSING)
            for task in self.tasks.get_by_status(status)
            if task.unit_id
        }
        for unit in self.knowledge.list_units(processed=False):
            if unit.unit_id in scheduled:
                continue
            task_type = self._resume_task_type(unit)
            if task_type is None:
                self._complete_unit(unit.unit_id, unit.session_id)
                summary.units_completed += 1
                continue
            self.create_task_if_not_exists(
                task_type,
                {"unit_id": unit.unit_id, "session_id": unit.session_id},
                TASK_PRIORITIES[task_type],
            )
            summary.units_resumed += 1
            logger.info("Resuming unit %s at %s", unit.unit_id, task_type.value)

        if summary.stale_tasks_reset or summary.units_resumed or summary.units_completed:
            logger.info(
                "Recovery: %d stale tasks reset, %d units resumed, %d units completed",
                summary.stale_tasks_reset,
                summary.units_resumed,
                summary.units_completed,
            )
        return summary

    def process_queue(self) -> int:
        """Start as many eligible tasks as capacity allows; returns how many started."""

        self._drain_scheduled = False
        capacity = self.config.max_concurrent - len(self._active)
        if capacity <= 0:
            return 0
        try:
            now = utc_now()
            candidates: dict[str, TaskView] = {}
            for task in [*self.tasks.get_pending(now=now), *self.tasks.get_retryable(now=now)]:
                if task.task_id in self._active or task.task_type not in self.registry:
                    continue
                candidates.setdefault(task.task_id, task)
        except Exception:
            logger.exception("Failed to scan task queue")
            return 0

        ordered = sorted(
            candidates.values(),
            key=lambda task: (-task.priority_value, task.created_at),
        )
        loop = asyncio.get_running_loop()
        for task in ordered[:capacity]:
            self._active[task.task_id] = loop.create_task(
                self._run(task),
                name=f"task:{task.task_id}",
            )
        return min(len(ordered), capacity)

    async def _poll_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self.config.poll_interval_seconds)
            if not self._running:
                return
            try:
                self.process_queue()
            except Exception:
                logger.exception("Polling tick failed")

    async def _run(self, task: TaskView) -> None:
        try:
            await self._execute_task(task)
        except Exception:
            logger.exception("Unhandled error while running task %s", task.task_id)
        finally:
            self._active.pop(task.task_id, None)
            if self._running or self._draining:
                self.process_queue()

    async def _execute_task(self, task: TaskView) -> None:
        attempt = task.attempts + 1
        running = self.tasks.update(
            task.task_id,
            status=TaskStatus.PROCESSING,
            started_at=utc_now(),
            attempts=attempt,
            event_type="started",
            details={"attempt": attempt},
        )
        if running is None:
            logger.warning("Task %s disappeared before execution", task.task_id)
            return

        logger.info(
            "Executing %s task %s (attempt %d/%d)",
            task.task_type.value,
            task.task_id,
            attempt,
            task.max_attempts,
        )
        try:
            handler = self.registry.get(task.task_type)
            if task.payload is None:
                raise PipelineError(f"Task {task.task_id} has no readable payload")
            context = TaskContext(
                task=running,
                payload=task.payload,
                checkpoint=task.checkpoint,
                tasks=self.tasks,
                knowledge=self.knowledge,
                events=self.events,
                save_checkpoint=self._checkpoint_writer(task.task_id),
            )
            result = await handler.execute(context)
        except Exception as error:
            self._handle_failure(task, error)
            return

        self.tasks.update(
            task.task_id,
            status=TaskStatus.COMPLETED,
            completed_at=utc_now(),
            checkpoint=None,
            event_type="completed",
            details={"result": result or {}},
        )
        logger.info("Completed %s task %s", task.task_type.value, task.task_id)

    def _handle_failure(self, task: TaskView, error: Exception) -> None:
        attempts = task.attempts + 1
        message = str(error) or error.__class__.__name__
        now = utc_now()
        if attempts >= task.max_attempts:
            self.tasks.update(
                task.task_id,
                status=TaskStatus.FAILED,
                attempts=attempts,
                next_retry_at=None,
                last_error=message,
                last_error_at=now,
                event_type="failed",
                details={"attempt": attempts, "error": message},
            )
            logger.error(
                "Task %s (%s, unit %s) failed permanently after %d attempts: %s",
                task.task_id,
                task.task_type.value,
                task.unit_id,
                attempts,
                message,
                exc_info=error,
            )
            return

        delay = compute_backoff_seconds(task.attempts, task.backoff, rng=self._rng)
        retry_at = now + timedelta(seconds=delay)
        self.tasks.update(
            task.task_id,
            status=TaskStatus.PENDING,
            attempts=attempts,
            next_retry_at=retry_at,
            execute_at=retry_at,
            last_error=message,
            last_error_at=now,
            event_type="retry_scheduled",
            details={"attempt": attempts, "delay_seconds": round(delay, 3), "error": message},
        )
        logger.warning(
            "Task %s (%s, unit %s) failed on attempt %d/%d, retrying in %.2fs: %s",
            task.task_id,
            task.task_type.value,
            task.unit_id,
            attempts,
            task.max_attempts,
            delay,
            message,
            exc_info=error,
        )

    def _checkpoint_writer(self, task_id: str) -> CheckpointWriter:
        def _write(step: str, data: Any = None, *, total_steps: int | None = None) -> Checkpoint:
            current = self.tasks.get_by_id(task_id)
            previous = current.checkpoint if current is not None else None
            completed = list(previous.completed_steps) if previous is not None else []
            if step not in completed:
                completed.append(step)
            checkpoint = Checkpoint(
                step=step,
                step_index=completed.index(step),
                total_steps=total_steps
                if total_steps is not None
                else (previous.total_steps if previous is not None else None),
                intermediate_data=data,
                completed_steps=completed,
            )
            self.tasks.update(task_id, checkpoint=checkpoint)
            return checkpoint

        return _write

    def _create_task(
        self,
        task_type: TaskType,
        payload: dict[str, Any],
        priority: TaskPriority,
    ) -> TaskView:
        session_id = payload.get("session_id")
        task = self.tasks.create(
            TaskCreate(
                task_type=task_type,
                payload=payload,
                priority=priority,
                max_attempts=self.config.default_max_attempts,
                backoff=self.config.backoff,
                session_id=str(session_id) if session_id else None,
            ),
        )
        logger.debug("Created %s task %s for unit %s", task_type.value, task.task_id, task.unit_id)
        return task

    def _schedule_on(self, task_type: TaskType, priority: TaskPriority) -> EventCallback:
        def _on_event(event: PipelineEvent) -> None:
            self.create_task_if_not_exists(task_type, dict(event.payload), priority)
            self._request_drain()

        return _on_event

    def _on_llm_observers_completed(self, event: PipelineEvent) -> None:
        session_id = event.payload.get("session_id")
        self._complete_unit(event.correlation_id, str(session_id) if session_id else "")

    def _complete_unit(self, unit_id: str, session_id: str) -> None:
        if not self.knowledge.mark_unit_processed(unit_id):
            logger.debug("Unit %s was already completed", unit_id)
            return
        summary = self.knowledge.unit_summary(unit_id)
        self.events.emit_unit_completed(unit_id, session_id, summary.to_dict())
        logger.info("Unit %s completed: %s", unit_id, summary.to_dict())

    def _request_drain(self) -> None:
        if not self._running or self._drain_scheduled:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._drain_scheduled = True
        loop.call_soon(self.process_queue)

    def _resume_task_type(self, unit: ConversationUnit) -> TaskType | None:
        if unit.stage is not None:
            return RESUME_FROM_STAGE[unit.stage]
        if self.knowledge.has_claim_sources(unit.unit_id):
            return TaskType.RUN_NONLLM_OBSERVERS
        if self.knowledge.has_propositions(unit.unit_id):
            return TaskType.RESOLVE_AND_DERIVE
        if self.knowledge.has_spans(unit.unit_id):
            return TaskType.EXTRACT_PRIMITIVES
        return TaskType.PREPROCESS_UNIT
