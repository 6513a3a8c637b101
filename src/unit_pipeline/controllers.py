"""Controllers for unit-pipeline CLI commands."""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path

from unit_pipeline.config import Settings
from unit_pipeline.knowledge.models import UnitCreate
from unit_pipeline.knowledge.repository import KnowledgeRepository
from unit_pipeline.llm.client import HttpModelClient
from unit_pipeline.orchestrator.event_loop import Orchestrator, RecoverySummary
from unit_pipeline.orchestrator.events import EventBus
from unit_pipeline.orchestrator.models import TaskStatus
from unit_pipeline.orchestrator.repository import TaskRepository
from unit_pipeline.pipeline.defaults import build_default_handlers
from unit_pipeline.storage.alembic_runner import current_revision
from unit_pipeline.storage.common import utc_now


@dataclass(slots=True)
class SubmitUnitCommand:
    """CLI input for submitting a conversational unit."""

    db_path: Path | None
    text: str
    session_id: str
    speaker: str = "user"


@dataclass(slots=True)
class RunCommand:
    """CLI input for running the orchestrator."""

    db_path: Path | None
    until_idle: bool
    duration_seconds: float | None = None


@dataclass(slots=True)
class StatusCommand:
    db_path: Path | None


@dataclass(slots=True)
class ListTasksCommand:
    """CLI input for task listing."""

    db_path: Path | None
    status: str | None
    limit: int


@dataclass(slots=True)
class InspectTaskCommand:
    """CLI input for task inspection."""

    db_path: Path | None
    task_id: str


@dataclass(slots=True)
class PruneTasksCommand:
    """CLI input for terminal task retention."""

    db_path: Path | None
    older_than_days: int | None


@dataclass(slots=True)
class ListUnitsCommand:
    db_path: Path | None
    processed: bool | None
    limit: int


@dataclass(slots=True)
class ListClaimsCommand:
    db_path: Path | None
    unit_id: str | None
    limit: int


@dataclass(slots=True)
class _Stores:
    tasks: TaskRepository
    knowledge: KnowledgeRepository


class PipelineCliController:
    """Coordinates submission, execution and inspection CLI operations."""

    def submit(self, command: SubmitUnitCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _stores(settings) as stores:
            orchestrator = Orchestrator(
                tasks=stores.tasks,
                knowledge=stores.knowledge,
                events=EventBus(),
                config=settings.event_loop_config(),
            )
            orchestrator.initialize(recover=False)
            unit = orchestrator.submit_unit(
                UnitCreate(
                    text=command.text,
                    session_id=command.session_id,
                    speaker=command.speaker,
                ),
            )
            tasks = stores.tasks.get_by_session(command.session_id)
        scheduled = [task for task in tasks if task.unit_id == unit.unit_id]
        return [
            f"Unit submitted: unit_id={unit.unit_id} session_id={unit.session_id}",
            *(
                f"  scheduled {task.task_type.value} task_id={task.task_id}"
                for task in scheduled
            ),
        ]

    def run(self, command: RunCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _stores(settings) as stores:
            recovery, status = asyncio.run(_run_orchestrator(settings, stores, command))
        return [
            "Recovery: "
            f"stale_reset={recovery.stale_tasks_reset} units_resumed={recovery.units_resumed} "
            f"units_completed={recovery.units_completed}",
            *_status_lines(status),
        ]

    def status(self, command: StatusCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _stores(settings) as stores:
            counts = stores.tasks.count_by_status()
            pending_units = len(stores.knowledge.list_units(processed=False))
            processed_units = len(stores.knowledge.list_units(processed=True))
        revision = current_revision(settings.db_path)
        return [
            *_status_lines(counts),
            f"Units: processed={processed_units} in_progress={pending_units}",
            f"Schema revision: {revision or '-'}",
        ]

    def list_tasks(self, command: ListTasksCommand) -> list[str]:
        settings = _settings(command.db_path)
        status_filter = _parse_status(command.status)
        with _stores(settings) as stores:
            tasks = stores.tasks.list_tasks(status=status_filter, limit=command.limit)

        lines = [f"Tasks: {len(tasks)}"]
        for task in tasks:
            lines.append(
                f"  {task.task_id} type={task.task_type.value} status={task.status.value} "
                f"priority={task.priority.value} attempts={task.attempts}/{task.max_attempts} "
                f"unit={task.unit_id or '-'} execute_at={task.execute_at.isoformat()}",
            )
        return lines

    def inspect_task(self, command: InspectTaskCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _stores(settings) as stores:
            details = stores.tasks.get_task_details(task_id=command.task_id)
        if details is None:
            return [f"Task not found: {command.task_id}"]

        task = details.task
        checkpoint = task.checkpoint
        lines = [
            f"Task: {task.task_id}",
            f"Type: {task.task_type.value}",
            f"Status: {task.status.value}",
            f"Unit: {task.unit_id or '-'}",
            f"Attempts: {task.attempts}/{task.max_attempts}",
            f"Error: {task.last_error or '-'}",
            f"Next retry: {task.next_retry_at.isoformat() if task.next_retry_at else '-'}",
            "Checkpoint: "
            + (
                f"{checkpoint.step} ({', '.join(checkpoint.completed_steps)})"
                if checkpoint is not None
                else "-"
            ),
            f"Events: {len(details.events)}",
        ]
        for event in details.events:
            lines.append(
                f"  {event.created_at.isoformat()} {event.event_type} "
                f"{event.status_from.value if event.status_from else '-'} -> "
                f"{event.status_to.value if event.status_to else '-'}",
            )
        return lines

    def prune_tasks(self, command: PruneTasksCommand) -> list[str]:
        settings = _settings(command.db_path)
        days = (
            command.older_than_days
            if command.older_than_days is not None
            else settings.orchestrator.task_retention_days
        )
        with _stores(settings) as stores:
            deleted = stores.tasks.prune_terminal(older_than=utc_now() - timedelta(days=days))
        return [f"Pruned terminal tasks older than {days} days: {deleted}"]

    def list_units(self, command: ListUnitsCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _stores(settings) as stores:
            units = stores.knowledge.list_units(processed=command.processed, limit=command.limit)
        lines = [f"Units: {len(units)}"]
        for unit in units:
            preview = unit.sanitized_text[:60]
            lines.append(
                f"  {unit.unit_id} session={unit.session_id} "
                f"stage={unit.stage.value if unit.stage else '-'} processed={unit.processed} "
                f"text={preview!r}",
            )
        return lines

    def list_claims(self, command: ListClaimsCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _stores(settings) as stores:
            if command.unit_id:
                claims = stores.knowledge.list_claims_for_unit(command.unit_id)[: command.limit]
            else:
                claims = stores.knowledge.recent_claims(command.limit, state=None)
        lines = [f"Claims: {len(claims)}"]
        for claim in claims:
            lines.append(
                f"  {claim.claim_id} type={claim.claim_type.value} "
                f"confidence={claim.confidence:.2f} stakes={claim.stakes.value} "
                f"state={claim.state.value} subject={claim.subject!r} "
                f"statement={claim.statement!r}",
            )
        return lines


async def _run_orchestrator(
    settings: Settings,
    stores: _Stores,
    command: RunCommand,
) -> tuple[RecoverySummary, dict[TaskStatus, int]]:
    async with HttpModelClient(
        base_url=settings.model.base_url,
        models=settings.model.models_by_tier(),
        api_key=settings.model.api_key,
        timeout_seconds=settings.model.timeout_seconds,
        max_retries=settings.model.max_retries,
    ) as client:
        orchestrator = Orchestrator(
            tasks=stores.tasks,
            knowledge=stores.knowledge,
            events=EventBus(),
            config=settings.event_loop_config(),
        )
        for handler in build_default_handlers(
            client,
            extraction_tier=settings.extraction.extraction_tier,
            observer_tier=settings.extraction.observer_tier,
        ):
            orchestrator.register_handler(handler)
        recovery = orchestrator.initialize()

        if command.until_idle:
            await orchestrator.run_until_idle()
        else:
            orchestrator.start()
            try:
                if command.duration_seconds is None:
                    await asyncio.Event().wait()
                else:
                    await asyncio.sleep(command.duration_seconds)
            finally:
                with contextlib.suppress(asyncio.CancelledError):
                    await orchestrator.stop()
                await orchestrator.wait_idle()
    return recovery, stores.tasks.count_by_status()


def _status_lines(counts: dict[TaskStatus, int]) -> list[str]:
    return [
        "Tasks: " + " ".join(f"{status.value}={counts.get(status, 0)}" for status in TaskStatus),
    ]


def _settings(db_path: Path | None) -> Settings:
    settings = Settings.from_env(db_path=db_path)
    settings.validate()
    return settings


def _parse_status(value: str | None) -> TaskStatus | None:
    if value is None:
        return None
    try:
        return TaskStatus(value)
    except ValueError as error:
        choices = ", ".join(item.value for item in TaskStatus)
        raise ValueError(f"Unsupported task status: {value}. Supported: {choices}") from error


@contextmanager
def _stores(settings: Settings) -> Iterator[_Stores]:
    busy_timeout = settings.orchestrator.sqlite_busy_timeout_ms
    tasks = TaskRepository(settings.db_path, sqlite_busy_timeout_ms=busy_timeout)
    knowledge = KnowledgeRepository(settings.db_path, sqlite_busy_timeout_ms=busy_timeout)
    tasks.init_schema()
    try:
        yield _Stores(tasks=tasks, knowledge=knowledge)
    finally:
        knowledge.close()
        tasks.close()
