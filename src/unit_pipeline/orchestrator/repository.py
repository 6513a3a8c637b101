"""Persistent task store backed by SQLModel + SQLite."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from datetime import datetime
from pathlib import Path
from typing import Any
from uuid import uuid4

from sqlalchemy import delete as sa_delete
from sqlalchemy import func, or_
from sqlmodel import Session, col, select

from unit_pipeline.orchestrator.models import (
    PRIORITY_VALUES,
    TERMINAL_STATUSES,
    BackoffConfig,
    Checkpoint,
    TaskCreate,
    TaskDetails,
    TaskEventView,
    TaskPriority,
    TaskStatus,
    TaskType,
    TaskView,
)
from unit_pipeline.storage.alembic_runner import upgrade_head
from unit_pipeline.storage.common import (
    build_sqlite_engine,
    dump_json,
    load_json_dict,
    optional_db,
    optional_utc,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from unit_pipeline.storage.sqlmodel_models import TaskEventRecord, TaskRecord

logger = logging.getLogger(__name__)

TaskListener = Callable[[TaskView], None]

_DATETIME_FIELDS = frozenset(
    {
        "last_error_at",
        "next_retry_at",
        "execute_at",
        "started_at",
        "completed_at",
    },
)
_PLAIN_FIELDS = frozenset(
    {
        "attempts",
        "max_attempts",
        "last_error",
        "group_id",
        "depends_on",
        "session_id",
    },
)
UPDATABLE_FIELDS = _DATETIME_FIELDS | _PLAIN_FIELDS | {
    "status",
    "priority",
    "payload",
    "checkpoint",
    "backoff",
}


class TaskRepository:
    """Task store: CRUD plus the status, priority and time based queue queries."""

    def __init__(self, db_path: Path, *, sqlite_busy_timeout_ms: int = 5_000) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(
            db_path=db_path,
            busy_timeout_ms=sqlite_busy_timeout_ms,
        )
        self._listeners: list[TaskListener] = []

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations."""

        upgrade_head(self.db_path)

    def subscribe(self, listener: TaskListener) -> Callable[[], None]:
        """Call ``listener`` with the fresh view after every task mutation."""

        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def create(self, payload: TaskCreate) -> TaskView:
        """Insert a pending task."""

        now = utc_now()
        task_id = payload.task_id or str(uuid4())
        with Session(self.engine) as session:
            row = TaskRecord(
                task_id=task_id,
                task_type=payload.task_type.value,
                status=TaskStatus.PENDING.value,
                priority=payload.priority.value,
                priority_value=PRIORITY_VALUES[payload.priority],
                payload_json=dump_json(payload.payload),
                attempts=0,
                max_attempts=payload.max_attempts,
                backoff_json=dump_json(payload.backoff.to_dict()),
                execute_at=to_db_datetime(payload.execute_at or now),
                group_id=payload.group_id,
                depends_on=payload.depends_on,
                session_id=payload.session_id,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            session.flush()
            self._add_event(
                session=session,
                task_id=task_id,
                event_type="created",
                status_from=None,
                status_to=TaskStatus.PENDING,
                details={
                    "task_type": payload.task_type.value,
                    "priority": payload.priority.value,
                    "max_attempts": payload.max_attempts,
                },
            )
            session.commit()
            session.refresh(row)
            view = _to_task_view(row)
        self._notify(view)
        return view

    def update(
        self,
        task_id: str,
        *,
        event_type: str | None = None,
        details: dict[str, object] | None = None,
        **changes: Any,
    ) -> TaskView | None:
        """Apply a partial update, optionally recording an audit event.

        Returns the updated view, or ``None`` when the task does not exist.
        """

        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Unsupported task fields: {', '.join(sorted(unknown))}")

        with Session(self.engine) as session:
            row = session.get(TaskRecord, task_id)
            if row is None:
                return None
            status_from = TaskStatus(row.status)
            for name, value in changes.items():
                _apply_change(row, name, value)
            row.updated_at = utc_now()
            session.add(row)
            if event_type is not None:
                self._add_event(
                    session=session,
                    task_id=task_id,
                    event_type=event_type,
                    status_from=status_from,
                    status_to=TaskStatus(row.status),
                    details=details or {},
                )
            session.commit()
            session.refresh(row)
            view = _to_task_view(row)
        self._notify(view)
        return view

    def get_by_id(self, task_id: str) -> TaskView | None:
        with Session(self.engine) as session:
            row = session.get(TaskRecord, task_id)
            return _to_task_view_or_none(row) if row is not None else None

    def get_all(self) -> list[TaskView]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(TaskRecord).order_by(col(TaskRecord.created_at).asc()),
            ).all()
        return _to_task_views(rows)

    def get_by_status(self, status: TaskStatus) -> list[TaskView]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(TaskRecord)
                .where(TaskRecord.status == status.value)
                .order_by(col(TaskRecord.created_at).asc()),
            ).all()
        return _to_task_views(rows)

    def get_unfinished_by_type(self, task_type: TaskType) -> list[TaskView]:
        """Tasks of one type in any status other than completed, oldest first."""

        with Session(self.engine) as session:
            rows = session.exec(
                select(TaskRecord)
                .where(
                    TaskRecord.task_type == task_type.value,
                    TaskRecord.status != TaskStatus.COMPLETED.value,
                )
                .order_by(col(TaskRecord.created_at).asc()),
            ).all()
        return _to_task_views(rows)

    def get_by_session(self, session_id: str) -> list[TaskView]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(TaskRecord)
                .where(TaskRecord.session_id == session_id)
                .order_by(col(TaskRecord.created_at).asc()),
            ).all()
        return _to_task_views(rows)

    def get_pending(self, *, now: datetime | None = None) -> list[TaskView]:
        """Pending tasks due for execution, highest priority then oldest first."""

        cutoff = to_db_datetime(now or utc_now())
        with Session(self.engine) as session:
            rows = session.exec(
                select(TaskRecord)
                .where(
                    TaskRecord.status == TaskStatus.PENDING.value,
                    col(TaskRecord.execute_at) <= cutoff,
                )
                .order_by(
                    col(TaskRecord.priority_value).desc(),
                    col(TaskRecord.created_at).asc(),
                ),
            ).all()
        return _to_task_views(rows)

    def get_retryable(self, *, now: datetime | None = None) -> list[TaskView]:
        """Failed tasks that still have attempts left and whose backoff elapsed."""

        cutoff = to_db_datetime(now or utc_now())
        with Session(self.engine) as session:
            rows = session.exec(
                select(TaskRecord)
                .where(
                    TaskRecord.status == TaskStatus.FAILED.value,
                    col(TaskRecord.attempts) < col(TaskRecord.max_attempts),
                    or_(
                        col(TaskRecord.next_retry_at).is_(None),
                        col(TaskRecord.next_retry_at) <= cutoff,
                    ),
                )
                .order_by(
                    col(TaskRecord.priority_value).desc(),
                    col(TaskRecord.created_at).asc(),
                ),
            ).all()
        return _to_task_views(rows)

    def count_by_status(self) -> dict[TaskStatus, int]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(TaskRecord.status, func.count()).group_by(TaskRecord.status),
            ).all()
        counts = dict.fromkeys(TaskStatus, 0)
        for status, count in rows:
            try:
                counts[TaskStatus(status)] = int(count)
            except ValueError:
                logger.warning("Ignoring %d tasks with unknown status %r", count, status)
        return counts

    def list_tasks(
        self,
        *,
        status: TaskStatus | None = None,
        limit: int = 50,
    ) -> list[TaskView]:
        """List recent tasks, optionally filtered by status."""

        with Session(self.engine) as session:
            statement = (
                select(TaskRecord).order_by(col(TaskRecord.created_at).desc()).limit(limit)
            )
            if status is not None:
                statement = statement.where(TaskRecord.status == status.value)
            rows = session.exec(statement).all()
        return _to_task_views(rows)

    def get_task_details(self, *, task_id: str) -> TaskDetails | None:
        """Return task details with event stream."""

        with Session(self.engine) as session:
            task = session.get(TaskRecord, task_id)
            view = _to_task_view_or_none(task) if task is not None else None
            if view is None:
                return None
            event_rows = session.exec(
                select(TaskEventRecord)
                .where(TaskEventRecord.task_id == task_id)
                .order_by(col(TaskEventRecord.created_at).asc(), col(TaskEventRecord.id).asc()),
            ).all()
            return TaskDetails(
                task=view,
                events=[
                    TaskEventView(
                        task_id=row.task_id,
                        event_type=row.event_type,
                        status_from=TaskStatus(row.status_from) if row.status_from else None,
                        status_to=TaskStatus(row.status_to) if row.status_to else None,
                        details=load_json_dict(row.details_json) or {},
                        created_at=to_utc_aware_datetime(row.created_at),
                    )
                    for row in event_rows
                ],
            )

    def prune_terminal(self, *, older_than: datetime) -> int:
        """Delete completed/failed tasks last updated before ``older_than``."""

        with Session(self.engine) as session:
            result = session.exec(
                sa_delete(TaskRecord).where(
                    col(TaskRecord.status).in_([status.value for status in TERMINAL_STATUSES]),
                    col(TaskRecord.updated_at) < to_db_datetime(older_than),
                ),
            )
            session.commit()
        deleted = int(result.rowcount or 0)
        if deleted:
            logger.info("Pruned %d terminal tasks older than %s", deleted, older_than.isoformat())
        return deleted

    def _notify(self, view: TaskView) -> None:
        for listener in list(self._listeners):
            try:
                listener(view)
            except Exception:
                logger.exception("Task listener failed for %s", view.task_id)

    def _add_event(  # noqa: PLR0913
        self,
        *,
        session: Session,
        task_id: str,
        event_type: str,
        status_from: TaskStatus | None,
        status_to: TaskStatus | None,
        details: dict[str, object],
    ) -> None:
        session.add(
            TaskEventRecord(
                task_id=task_id,
                event_type=event_type,
                status_from=status_from.value if status_from is not None else None,
                status_to=status_to.value if status_to is not None else None,
                details_json=dump_json(details) if details else None,
                created_at=utc_now(),
            ),
        )


def _apply_change(row: TaskRecord, name: str, value: Any) -> None:
    if name == "status":
        row.status = TaskStatus(value).value
    elif name == "priority":
        priority = TaskPriority(value)
        row.priority = priority.value
        row.priority_value = PRIORITY_VALUES[priority]
    elif name == "payload":
        row.payload_json = dump_json(value)
    elif name == "checkpoint":
        row.checkpoint_json = dump_json(value.to_dict()) if value is not None else None
    elif name == "backoff":
        row.backoff_json = dump_json(value.to_dict())
    elif name in _DATETIME_FIELDS:
        setattr(row, name, optional_db(value))
    else:
        setattr(row, name, value)


def parse_checkpoint(raw: str | None) -> Checkpoint | None:
    """Decode a stored checkpoint; malformed data reads as no checkpoint."""

    data = load_json_dict(raw)
    if data is None:
        return None
    try:
        return Checkpoint.from_dict(data)
    except (KeyError, TypeError, ValueError):
        logger.warning("Ignoring malformed checkpoint: %.200s", raw)
        return None


def _to_task_views(rows: Iterable[TaskRecord]) -> list[TaskView]:
    """Convert rows for a scan; a malformed row is logged and left out."""

    views: list[TaskView] = []
    for row in rows:
        view = _to_task_view_or_none(row)
        if view is not None:
            views.append(view)
    return views


def _to_task_view_or_none(row: TaskRecord) -> TaskView | None:
    try:
        return _to_task_view(row)
    except (KeyError, TypeError, ValueError) as error:
        logger.warning("Skipping malformed task %s: %s", row.task_id, error)
        return None


def _to_task_view(row: TaskRecord) -> TaskView:
    return TaskView(
        task_id=row.task_id,
        task_type=TaskType(row.task_type),
        status=TaskStatus(row.status),
        priority=TaskPriority(row.priority),
        priority_value=row.priority_value,
        payload=load_json_dict(row.payload_json),
        attempts=row.attempts,
        max_attempts=row.max_attempts,
        last_error=row.last_error,
        last_error_at=optional_utc(row.last_error_at),
        next_retry_at=optional_utc(row.next_retry_at),
        backoff=BackoffConfig.from_dict(load_json_dict(row.backoff_json)),
        checkpoint=parse_checkpoint(row.checkpoint_json),
        execute_at=to_utc_aware_datetime(row.execute_at),
        started_at=optional_utc(row.started_at),
        completed_at=optional_utc(row.completed_at),
        group_id=row.group_id,
        depends_on=row.depends_on,
        session_id=row.session_id,
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
    )
