"""Exception hierarchy shared across the pipeline."""

from __future__ import annotations


class PipelineError(RuntimeError):
    """Base error for orchestration and pipeline failures."""


class MissingHandlerError(PipelineError):
    """Raised when a task type has no registered handler."""

    def __init__(self, task_type: str) -> None:
        super().__init__(f"No handler registered for task type: {task_type}")
        self.task_type = task_type


class RecordNotFoundError(PipelineError):
    """Raised when a handler input row (unit, entity, claim) does not exist."""


class ModelClientError(PipelineError):
    """Transport or protocol failure talking to the model provider."""
