"""Task record, retry policy and checkpoint models for the orchestrator."""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

JITTER_FRACTION = 0.25


class TaskType(str, Enum):
    """Pipeline stage a task executes."""

    PREPROCESS_UNIT = "preprocess_unit"
    EXTRACT_PRIMITIVES = "extract_primitives"
    RESOLVE_AND_DERIVE = "resolve_and_derive"
    RUN_NONLLM_OBSERVERS = "run_nonllm_observers"
    RUN_LLM_OBSERVERS = "run_llm_observers"


class TaskStatus(str, Enum):
    """Task lifecycle states."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class TaskPriority(str, Enum):
    """Scheduling priority tag."""

    CRITICAL = "critical"
    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"


PRIORITY_VALUES: dict[TaskPriority, int] = {
    TaskPriority.CRITICAL: 100,
    TaskPriority.HIGH: 75,
    TaskPriority.NORMAL: 50,
    TaskPriority.LOW: 25,
}

TERMINAL_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED})


@dataclass(slots=True, frozen=True)
class BackoffConfig:
    """Exponential retry policy stored with every task."""

    base_delay_ms: int = 1_000
    max_delay_ms: int = 60_000
    multiplier: float = 2.0
    jitter: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "base_delay_ms": self.base_delay_ms,
            "max_delay_ms": self.max_delay_ms,
            "multiplier": self.multiplier,
            "jitter": self.jitter,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any] | None) -> BackoffConfig:
        if not raw:
            return cls()
        default = cls()
        return cls(
            base_delay_ms=int(raw.get("base_delay_ms", default.base_delay_ms)),
            max_delay_ms=int(raw.get("max_delay_ms", default.max_delay_ms)),
            multiplier=float(raw.get("multiplier", default.multiplier)),
            jitter=bool(raw.get("jitter", default.jitter)),
        )


def _capped_delay_ms(attempts: int, config: BackoffConfig) -> float:
    return min(
        float(config.max_delay_ms),
        config.base_delay_ms * (config.multiplier ** max(attempts, 0)),
    )


def compute_backoff_seconds(
    attempts: int,
    config: BackoffConfig,
    *,
    rng: random.Random | None = None,
) -> float:
    """Delay before the next retry after ``attempts`` failed executions.

    The exponential part is capped at ``max_delay_ms``. Jitter adds up to
    ``JITTER_FRACTION`` of the delay but never reaches past the unjittered
    delay of the following attempt, so delays stay non-decreasing in
    ``attempts`` whatever the random draws; at the cap there is no jitter.
    """

    delay_ms = _capped_delay_ms(attempts, config)
    if config.jitter:
        source = rng if rng is not None else random
        jittered = delay_ms + delay_ms * JITTER_FRACTION * source.random()
        delay_ms = max(delay_ms, min(jittered, _capped_delay_ms(attempts + 1, config)))
    return delay_ms / 1000.0


@dataclass(slots=True)
class Checkpoint:
    """Mid-execution progress marker written by a handler."""

    step: str
    step_index: int
    total_steps: int | None = None
    intermediate_data: Any = None
    completed_steps: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "step": self.step,
            "step_index": self.step_index,
            "total_steps": self.total_steps,
            "intermediate_data": self.intermediate_data,
            "completed_steps": list(self.completed_steps),
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Checkpoint:
        completed = raw.get("completed_steps") or []
        total = raw.get("total_steps")
        return cls(
            step=str(raw["step"]),
            step_index=int(raw.get("step_index", 0)),
            total_steps=int(total) if total is not None else None,
            intermediate_data=raw.get("intermediate_data"),
            completed_steps=[str(item) for item in completed],
        )


@dataclass(slots=True)
class TaskCreate:
    """Payload for inserting a new task."""

    task_type: TaskType
    payload: dict[str, Any]
    priority: TaskPriority = TaskPriority.NORMAL
    max_attempts: int = 5
    backoff: BackoffConfig = field(default_factory=BackoffConfig)
    execute_at: datetime | None = None
    group_id: str | None = None
    depends_on: str | None = None
    session_id: str | None = None
    task_id: str | None = None


@dataclass(slots=True)
class TaskView:
    """Stored task state."""

    task_id: str
    task_type: TaskType
    status: TaskStatus
    priority: TaskPriority
    priority_value: int
    payload: dict[str, Any] | None
    attempts: int
    max_attempts: int
    last_error: str | None
    last_error_at: datetime | None
    next_retry_at: datetime | None
    backoff: BackoffConfig
    checkpoint: Checkpoint | None
    execute_at: datetime
    started_at: datetime | None
    completed_at: datetime | None
    group_id: str | None
    depends_on: str | None
    session_id: str | None
    created_at: datetime
    updated_at: datetime

    @property
    def unit_id(self) -> str | None:
        """Deduplication key carried in the payload, if any."""

        if not self.payload:
            return None
        value = self.payload.get("unit_id")
        return str(value) if value else None


@dataclass(slots=True)
class TaskEventView:
    """One audit record from the task history."""

    task_id: str
    event_type: str
    status_from: TaskStatus | None
    status_to: TaskStatus | None
    details: dict[str, object]
    created_at: datetime


@dataclass(slots=True)
class TaskDetails:
    """Task with its audit history."""

    task: TaskView
    events: list[TaskEventView]
