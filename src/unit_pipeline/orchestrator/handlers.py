"""Handler contract and the task-type dispatch table."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol

from unit_pipeline.errors import MissingHandlerError
from unit_pipeline.orchestrator.models import Checkpoint, TaskType, TaskView

if TYPE_CHECKING:
    from unit_pipeline.knowledge.repository import KnowledgeRepository
    from unit_pipeline.orchestrator.events import EventBus
    from unit_pipeline.orchestrator.repository import TaskRepository

logger = logging.getLogger(__name__)

CheckpointWriter = Callable[..., Checkpoint]


@dataclass(slots=True)
class TaskContext:
    """Everything a handler may touch while executing one task."""

    task: TaskView
    payload: dict[str, Any]
    checkpoint: Checkpoint | None
    tasks: TaskRepository
    knowledge: KnowledgeRepository
    events: EventBus
    save_checkpoint: CheckpointWriter

    @property
    def task_id(self) -> str:
        return self.task.task_id

    @property
    def unit_id(self) -> str:
        return str(self.payload["unit_id"])

    @property
    def session_id(self) -> str:
        return str(self.payload.get("session_id") or "")

    def mark_step(
        self,
        step: str,
        data: Any = None,
        *,
        total_steps: int | None = None,
    ) -> Checkpoint:
        """Persist progress so a restarted attempt can skip finished steps."""

        self.checkpoint = self.save_checkpoint(step, data, total_steps=total_steps)
        return self.checkpoint

    def step_done(self, step: str) -> bool:
        return self.checkpoint is not None and step in self.checkpoint.completed_steps


class TaskHandler(Protocol):
    """Executable body for one task type."""

    task_type: TaskType

    async def execute(self, context: TaskContext) -> dict[str, Any] | None:
        """Run the task; raising routes the task into the retry path."""


class HandlerRegistry:
    """Maps each task type to exactly one handler instance."""

    def __init__(self) -> None:
        self._handlers: dict[TaskType, TaskHandler] = {}

    def register(self, handler: TaskHandler) -> None:
        previous = self._handlers.get(handler.task_type)
        if previous is not None and previous is not handler:
            logger.warning("Replacing handler for %s", handler.task_type.value)
        self._handlers[handler.task_type] = handler

    def unregister(self, task_type: TaskType) -> None:
        self._handlers.pop(task_type, None)

    def get(self, task_type: TaskType) -> TaskHandler:
        handler = self._handlers.get(task_type)
        if handler is None:
            raise MissingHandlerError(task_type.value)
        return handler

    def task_types(self) -> frozenset[TaskType]:
        return frozenset(self._handlers)

    def __contains__(self, task_type: object) -> bool:
        return task_type in self._handlers
