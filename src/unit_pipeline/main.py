"""CLI entrypoint for unit-pipeline."""

import logging
from pathlib import Path

import rich_click as click

from unit_pipeline import __version__
from unit_pipeline.controllers import (
    InspectTaskCommand,
    ListClaimsCommand,
    ListTasksCommand,
    ListUnitsCommand,
    PipelineCliController,
    PruneTasksCommand,
    RunCommand,
    StatusCommand,
    SubmitUnitCommand,
)
from unit_pipeline.orchestrator.models import TaskStatus

click.rich_click.USE_MARKDOWN = True
CONTROLLER = PipelineCliController()
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@click.group()
@click.version_option(version=__version__, prog_name="unit-pipeline")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    show_default=True,
    envvar="UNIT_PIPELINE_LOG_LEVEL",
    help="Logging level for pipeline diagnostics.",
)
def unit_pipeline(log_level: str) -> None:
    """Conversational unit extraction pipeline."""

    logging.basicConfig(level=getattr(logging, log_level.upper()), format=LOG_FORMAT)


@unit_pipeline.command("submit")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--session-id", required=True, help="Conversation session identifier.")
@click.option("--speaker", default="user", show_default=True, help="Who said the text.")
@click.argument("text")
def submit(db_path: Path | None, session_id: str, speaker: str, text: str) -> None:
    """Store a unit of text and schedule its processing."""

    if not text.strip():
        raise click.BadParameter("Text must not be empty.", param_hint="TEXT")
    _emit_lines(
        CONTROLLER.submit(
            SubmitUnitCommand(
                db_path=db_path,
                text=text,
                session_id=session_id,
                speaker=speaker,
            ),
        ),
    )


@unit_pipeline.command("run")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--until-idle/--serve",
    default=True,
    show_default=True,
    help="Drain due work and exit, or keep polling.",
)
@click.option(
    "--duration",
    "duration_seconds",
    type=click.FloatRange(min=0),
    default=None,
    help="With `--serve`, stop after this many seconds.",
)
def run(db_path: Path | None, until_idle: bool, duration_seconds: float | None) -> None:
    """Recover interrupted work and execute pipeline tasks."""

    _emit_lines(
        CONTROLLER.run(
            RunCommand(
                db_path=db_path,
                until_idle=until_idle,
                duration_seconds=duration_seconds,
            ),
        ),
    )


@unit_pipeline.command("status")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
def status(db_path: Path | None) -> None:
    """Show task and unit counts."""

    _emit_lines(CONTROLLER.status(StatusCommand(db_path=db_path)))


@unit_pipeline.group()
def tasks() -> None:
    """Task store commands."""


@tasks.command("list")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--status",
    type=click.Choice([item.value for item in TaskStatus], case_sensitive=False),
    default=None,
    help="Optional status filter.",
)
@click.option("--limit", type=click.IntRange(min=1), default=50, show_default=True)
def tasks_list(db_path: Path | None, status: str | None, limit: int) -> None:
    """List recent tasks."""

    _emit_lines(
        CONTROLLER.list_tasks(
            ListTasksCommand(
                db_path=db_path,
                status=status.lower() if status else None,
                limit=limit,
            ),
        ),
    )


@tasks.command("inspect")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.argument("task_id")
def tasks_inspect(db_path: Path | None, task_id: str) -> None:
    """Show one task with its checkpoint and audit events."""

    _emit_lines(CONTROLLER.inspect_task(InspectTaskCommand(db_path=db_path, task_id=task_id)))


@tasks.command("prune")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--older-than-days",
    type=click.IntRange(min=0),
    default=None,
    help="Retention window; defaults to `UNIT_PIPELINE_TASK_RETENTION_DAYS`.",
)
def tasks_prune(db_path: Path | None, older_than_days: int | None) -> None:
    """Delete completed and failed tasks past retention."""

    _emit_lines(
        CONTROLLER.prune_tasks(
            PruneTasksCommand(db_path=db_path, older_than_days=older_than_days),
        ),
    )


@unit_pipeline.group()
def units() -> None:
    """Conversation unit commands."""


@units.command("list")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--processed/--unprocessed",
    default=None,
    help="Filter by completion flag.",
)
@click.option("--limit", type=click.IntRange(min=1), default=50, show_default=True)
def units_list(db_path: Path | None, processed: bool | None, limit: int) -> None:
    """List stored units with their stage."""

    _emit_lines(
        CONTROLLER.list_units(
            ListUnitsCommand(db_path=db_path, processed=processed, limit=limit),
        ),
    )


@unit_pipeline.group()
def claims() -> None:
    """Derived claim commands."""


@claims.command("list")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--unit-id", default=None, help="Only claims sourced from this unit.")
@click.option("--limit", type=click.IntRange(min=1), default=50, show_default=True)
def claims_list(db_path: Path | None, unit_id: str | None, limit: int) -> None:
    """List derived claims, newest first."""

    _emit_lines(
        CONTROLLER.list_claims(
            ListClaimsCommand(db_path=db_path, unit_id=unit_id, limit=limit),
        ),
    )


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    unit_pipeline()
